"""Tests for the document store"""
import threading
from datetime import date
import pytest

from receiptflow.errors import ValidationError, NotFound, Forbidden, InvalidTransition
from receiptflow.models import (
    DocumentFields,
    DocumentFilters,
    DocumentStatus,
    DocumentUpdate,
    Identity,
    Role,
    StatusAction,
    TransactionType,
)


def _fields(**overrides):
    data = {
        "title": "Receipt",
        "vendor": "Staples",
        "category": "Office Supplies",
        "amount": 10.0,
        "date": date(2024, 3, 1),
    }
    data.update(overrides)
    return DocumentFields(**data)


def test_submit_as_employee_is_pending(store, employee, sample_fields):
    """Test employee submissions start pending"""
    document = store.submit(sample_fields, employee)

    assert document.status == DocumentStatus.PENDING
    assert document.userId == "emp-1"
    assert document.userRole == Role.EMPLOYEE
    assert document.userName == "John Doe"
    assert document.amount == 42.50
    assert document.date == date(2024, 3, 1)


@pytest.mark.parametrize("role_fixture", ["accountant", "admin"])
def test_submit_as_reviewer_is_approved(store, sample_fields, role_fixture, request):
    """Test accountant and admin submissions are approved immediately"""
    submitter = request.getfixturevalue(role_fixture)
    document = store.submit(sample_fields, submitter)
    assert document.status == DocumentStatus.APPROVED


def test_submit_as_owner_is_pending(store, owner, sample_fields):
    """Test owner role is not auto-approved"""
    assert store.submit(sample_fields, owner).status == DocumentStatus.PENDING


def test_submit_persists(store, employee, sample_fields):
    """Test a submitted document can be read back"""
    document = store.submit(sample_fields, employee, image_ref="a" * 64 + ".jpg")
    loaded = store.get(document.id)

    assert loaded.id == document.id
    assert loaded.vendor == "Staples"
    assert loaded.amount == 42.50
    assert loaded.imageRef == "a" * 64 + ".jpg"
    assert loaded.createdAt is not None


def test_submit_validation(store, employee):
    """Test missing title/amount and negative amounts are rejected"""
    with pytest.raises(ValidationError):
        store.submit(_fields(title=""), employee)
    with pytest.raises(ValidationError):
        store.submit(_fields(amount=None), employee)
    with pytest.raises(ValidationError):
        store.submit(_fields(amount=-1.0), employee)

    assert store.list(Role.ADMIN, "adm-1") == []


def test_submit_defaults_date_to_today(store, employee):
    """Test a missing expense date defaults to the submission day"""
    document = store.submit(_fields(date=None), employee)
    assert document.date == date.today()


def test_role_recorded_at_submission(store, sample_fields):
    """Test a later role change does not rewrite historical documents"""
    before = Identity(userId="u-1", role=Role.EMPLOYEE)
    document = store.submit(sample_fields, before)

    after = Identity(userId="u-1", role=Role.ACCOUNTANT)
    store.submit(sample_fields, after)

    assert store.get(document.id).userRole == Role.EMPLOYEE


def test_get_not_found(store):
    """Test retrieving non-existent document"""
    with pytest.raises(NotFound):
        store.get("non-existent-id")


def test_get_other_users_document_forbidden(store, employee, other_employee, accountant, sample_fields):
    """Test employees cannot read other employees' documents"""
    document = store.submit(sample_fields, employee)

    with pytest.raises(Forbidden):
        store.get(document.id, other_employee)
    assert store.get(document.id, employee).id == document.id
    assert store.get(document.id, accountant).id == document.id


def test_approve_pending(store, employee, accountant, sample_fields):
    """Test accountant approves a pending document"""
    document = store.submit(sample_fields, employee)
    approved = store.approve(document.id, accountant.role)

    assert approved.status == DocumentStatus.APPROVED
    assert approved.updatedAt is not None
    assert store.get(document.id).status == DocumentStatus.APPROVED


def test_reject_pending(store, employee, admin, sample_fields):
    """Test admin rejects a pending document"""
    document = store.submit(sample_fields, employee)
    rejected = store.set_status(document.id, StatusAction.REJECT, admin.role)
    assert rejected.status == DocumentStatus.REJECTED


def test_approve_twice(store, employee, accountant, sample_fields):
    """Test second approval fails and leaves the first result unchanged"""
    document = store.submit(sample_fields, employee)
    first = store.approve(document.id, Role.ACCOUNTANT)

    with pytest.raises(InvalidTransition):
        store.approve(document.id, Role.ACCOUNTANT)

    assert store.get(document.id) == first


@pytest.mark.parametrize("first, second", [
    (StatusAction.APPROVE, StatusAction.REJECT),
    (StatusAction.REJECT, StatusAction.APPROVE),
    (StatusAction.REJECT, StatusAction.REJECT),
])
def test_terminal_states(store, employee, sample_fields, first, second):
    """Test only pending -> approved/rejected transitions exist"""
    document = store.submit(sample_fields, employee)
    decided = store.set_status(document.id, first, Role.ADMIN)

    with pytest.raises(InvalidTransition):
        store.set_status(document.id, second, Role.ADMIN)
    assert store.get(document.id).status == decided.status


def test_role_check_before_state_check(store, employee, accountant):
    """Test the Staples scenario: employee re-approving gets Forbidden"""
    fields = DocumentFields(title="Staples", vendor="Staples", amount=42.50, date=date(2024, 3, 1))
    document = store.submit(fields, employee)
    assert document.status == DocumentStatus.PENDING

    assert store.approve(document.id, accountant.role).status == DocumentStatus.APPROVED

    with pytest.raises(Forbidden):
        store.approve(document.id, employee.role)


@pytest.mark.parametrize("role", [Role.EMPLOYEE, Role.OWNER])
def test_non_reviewer_cannot_approve(store, employee, sample_fields, role):
    """Test forbidden approvals leave the document pending"""
    document = store.submit(sample_fields, employee)
    with pytest.raises(Forbidden):
        store.approve(document.id, role)
    assert store.get(document.id).status == DocumentStatus.PENDING


def test_set_status_not_found(store):
    """Test approving an unknown id"""
    with pytest.raises(NotFound):
        store.approve("missing", Role.ADMIN)


def test_concurrent_approvals_single_winner(store, employee, sample_fields):
    """Test two racing approvals: exactly one succeeds"""
    document = store.submit(sample_fields, employee)
    outcomes = []
    barrier = threading.Barrier(8)

    def approve():
        barrier.wait()
        try:
            store.approve(document.id, Role.ACCOUNTANT)
            outcomes.append("ok")
        except InvalidTransition:
            outcomes.append("invalid")

    threads = [threading.Thread(target=approve) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("invalid") == 7


def test_edit_by_owner(store, employee, sample_fields):
    """Test the submitter edits content fields"""
    document = store.submit(sample_fields, employee)
    edited = store.edit(
        document.id,
        DocumentUpdate(vendor="Staples Inc.", amount=45.0, transactionType=TransactionType.EXPENSE),
        employee
    )

    assert edited.vendor == "Staples Inc."
    assert edited.amount == 45.0
    assert edited.transactionType == TransactionType.EXPENSE
    assert edited.title == "Office Supplies Receipt"
    assert edited.status == DocumentStatus.PENDING


def test_edit_keeps_status(store, employee, accountant, sample_fields):
    """Test editing an approved document leaves it approved"""
    document = store.submit(sample_fields, employee)
    store.approve(document.id, accountant.role)
    edited = store.edit(document.id, DocumentUpdate(notes="checked"), accountant)
    assert edited.status == DocumentStatus.APPROVED
    assert edited.notes == "checked"


def test_edit_forbidden(store, employee, other_employee, owner, sample_fields):
    """Test non-owners without an editor role cannot edit"""
    document = store.submit(sample_fields, employee)
    with pytest.raises(Forbidden):
        store.edit(document.id, DocumentUpdate(vendor="X"), other_employee)
    with pytest.raises(Forbidden):
        store.edit(document.id, DocumentUpdate(vendor="X"), owner)
    assert store.get(document.id).vendor == "Staples"


def test_edit_validation_is_all_or_nothing(store, employee, sample_fields):
    """Test an invalid edit changes no field"""
    document = store.submit(sample_fields, employee)
    with pytest.raises(ValidationError):
        store.edit(document.id, DocumentUpdate(vendor="Changed", amount=-5), employee)

    loaded = store.get(document.id)
    assert loaded.vendor == "Staples"
    assert loaded.amount == 42.50


@pytest.mark.parametrize("amount", [1e14, 10 ** 13, 9999999999999.999, float("inf"), float("nan")])
def test_submit_out_of_range_amount(store, employee, amount):
    """Test amounts the ledger column cannot hold are validation errors"""
    with pytest.raises(ValidationError):
        store.submit(_fields(amount=amount), employee)
    assert store.snapshot() == []


def test_submit_largest_amount(store, employee):
    document = store.submit(_fields(amount=9999999999999.99), employee)
    assert store.get(document.id).amount == pytest.approx(9999999999999.99)


@pytest.mark.parametrize("amount", [1e14, float("inf"), float("-inf")])
def test_edit_out_of_range_amount(store, employee, sample_fields, amount):
    document = store.submit(sample_fields, employee)
    with pytest.raises(ValidationError):
        store.edit(document.id, DocumentUpdate(amount=amount), employee)
    assert store.get(document.id).amount == 42.50


def test_delete_by_owner_and_admin(store, employee, admin, sample_fields):
    """Test submitter and admin may delete"""
    first = store.submit(sample_fields, employee)
    second = store.submit(sample_fields, employee)

    store.delete(first.id, employee.role, employee.userId)
    store.delete(second.id, admin.role, admin.userId)

    with pytest.raises(NotFound):
        store.get(first.id)
    with pytest.raises(NotFound):
        store.get(second.id)


@pytest.mark.parametrize("role_fixture", ["accountant", "owner", "other_employee"])
def test_delete_forbidden(store, employee, sample_fields, role_fixture, request):
    """Test accountants, owners and other employees cannot delete"""
    caller = request.getfixturevalue(role_fixture)
    document = store.submit(sample_fields, employee)

    with pytest.raises(Forbidden):
        store.delete(document.id, caller.role, caller.userId)
    assert store.get(document.id).id == document.id


def test_delete_not_found(store):
    with pytest.raises(NotFound):
        store.delete("missing", Role.ADMIN, "adm-1")


def test_list_visibility(store, employee, other_employee, accountant, admin, owner):
    """Test employees only list their own documents, others see everything"""
    store.submit(_fields(title="Mine"), employee)
    store.submit(_fields(title="Theirs"), other_employee)

    mine = store.list(employee.role, employee.userId)
    assert [d.title for d in mine] == ["Mine"]

    for caller in (accountant, admin, owner):
        assert len(store.list(caller.role, caller.userId)) == 2


def test_list_visibility_with_filters(store, employee, other_employee):
    """Test no filter combination leaks another user's documents"""
    store.submit(_fields(title="Lunch", vendor="Bistro"), employee)
    store.submit(_fields(title="Lunch", vendor="Bistro"), other_employee)

    for filters in (
        DocumentFilters(search="lunch"),
        DocumentFilters(status=DocumentStatus.PENDING),
        DocumentFilters(dateFrom=date(2024, 1, 1), dateTo=date(2024, 12, 31)),
        DocumentFilters(search="bistro", status=DocumentStatus.PENDING, limit=10),
    ):
        documents = store.list(employee.role, employee.userId, filters)
        assert documents
        assert all(d.userId == employee.userId for d in documents)


def test_list_search_matches_title_vendor_category(store, admin):
    """Test case-insensitive substring search across three fields"""
    store.submit(_fields(title="Team Dinner", vendor="Bistro", category="Meals"), admin)
    store.submit(_fields(title="Flights", vendor="Airline Company", category="Travel"), admin)
    store.submit(_fields(title="Paper", vendor="Office Depot", category="Office Supplies"), admin)

    def titles(search):
        return sorted(d.title for d in store.list(Role.ADMIN, "adm-1", DocumentFilters(search=search)))

    assert titles("DINNER") == ["Team Dinner"]
    assert titles("airline") == ["Flights"]
    assert titles("supplies") == ["Paper"]
    assert titles("o") == ["Flights", "Paper", "Team Dinner"]
    assert titles("nothing") == []


def test_list_status_filter(store, employee, accountant):
    """Test exact status match; no status filter means all"""
    first = store.submit(_fields(title="A"), employee)
    store.submit(_fields(title="B"), employee)
    store.submit(_fields(title="C"), accountant)
    store.reject(first.id, Role.ADMIN)

    def count(status=None):
        return len(store.list(Role.ADMIN, "adm-1", DocumentFilters(status=status)))

    assert count() == 3
    assert count(DocumentStatus.PENDING) == 1
    assert count(DocumentStatus.APPROVED) == 1
    assert count(DocumentStatus.REJECTED) == 1


def test_list_date_range_and_pagination(store, admin):
    """Test date range filter and offset/limit paging"""
    for day in range(1, 6):
        store.submit(_fields(title=f"Day {day}", date=date(2024, 1, day)), admin)

    in_range = store.list(
        Role.ADMIN, "adm-1", DocumentFilters(dateFrom=date(2024, 1, 2), dateTo=date(2024, 1, 3))
    )
    assert sorted(d.title for d in in_range) == ["Day 2", "Day 3"]

    page, total = store.query(Role.ADMIN, "adm-1", DocumentFilters(offset=2, limit=2))
    assert total == 5
    assert len(page) == 2


def test_recent_newest_first(store, employee):
    """Test recent documents come back newest first"""
    for index in range(7):
        store.submit(_fields(title=f"R{index}"), employee)

    recent = store.recent(employee, limit=5)
    assert len(recent) == 5
    assert recent[0].title == "R6"


def test_count_by_status(store, employee, other_employee, accountant):
    """Test per-status counts respect visibility"""
    first = store.submit(_fields(), employee)
    store.submit(_fields(), employee)
    store.submit(_fields(), other_employee)
    store.approve(first.id, accountant.role)

    assert store.count_by_status(employee) == {"pending": 1, "approved": 1, "rejected": 0}
    assert store.count_by_status(accountant) == {"pending": 2, "approved": 1, "rejected": 0}


def test_export_csv(store, employee, other_employee):
    """Test CSV export only contains visible documents"""
    store.submit(_fields(title="Mine, with comma"), employee)
    store.submit(_fields(title="Theirs"), other_employee)

    csv_text = store.export_csv(employee).decode("utf-8")
    assert csv_text.startswith("id,title,vendor,category,amount,date,status")
    assert '"Mine, with comma"' in csv_text
    assert "Theirs" not in csv_text
    assert "2024-03-01" in csv_text


def test_snapshot_is_a_copy(store, admin):
    """Test snapshots do not change after later submissions"""
    store.submit(_fields(), admin)
    snapshot = store.snapshot()
    store.submit(_fields(), admin)

    assert len(snapshot) == 1
    assert len(store.snapshot()) == 2


def test_image_access_follows_document_visibility(store, employee, other_employee, accountant, owner, sample_fields):
    """Test attached images are only readable by callers who can see the document"""
    image_ref = "a" * 64 + ".jpg"
    thumbnail_ref = "b" * 64 + ".jpg"
    store.submit(sample_fields, employee, image_ref, thumbnail_ref)

    for caller in (employee, accountant, owner):
        store.check_image_access(image_ref, caller)
        store.check_image_access(thumbnail_ref, caller)

    with pytest.raises(Forbidden):
        store.check_image_access(image_ref, other_employee)
    with pytest.raises(Forbidden):
        store.check_image_access(thumbnail_ref, other_employee)


def test_image_access_unattached_draft(store, other_employee):
    """Test a scanned image no document holds yet stays readable"""
    store.check_image_access("c" * 64 + ".jpg", other_employee)
