import itertools

import pytest

from eng_portal.core.roles import ROLE_HIERARCHY, Role, UserStatus, parse_role, parse_status, rank, satisfies

LABELS = ["E-BASIC", "E-TOOL", "E-MASTER", "ADMIN"]


def test_ranks_follow_the_fixed_order():
    assert [rank(label) for label in LABELS] == [1, 2, 3, 4]
    assert Role.E_MASTER.rank == 3
    assert set(ROLE_HIERARCHY) == set(Role)


@pytest.mark.parametrize("actual,required", list(itertools.product(LABELS, LABELS)))
def test_satisfies_compares_ordinals(actual, required):
    assert satisfies(actual, required) == (rank(actual) >= rank(required))
    assert satisfies(Role(actual), Role(required)) == satisfies(actual, required)


@pytest.mark.parametrize("missing", [None, "", "SUPERUSER", 42, object()])
def test_unknown_actual_role_never_satisfies(missing):
    assert rank(missing) == 0
    for required in LABELS:
        assert satisfies(missing, required) is False


def test_no_requirement_only_needs_a_known_role():
    assert satisfies("E-BASIC") is True
    assert satisfies(None) is False


def test_labels_are_normalized_at_the_boundary():
    assert parse_role(" e-master ") is Role.E_MASTER
    with pytest.raises(ValueError):
        parse_role("super_admin")
    with pytest.raises(ValueError):
        parse_role(None)


def test_missing_status_reads_as_active():
    assert parse_status(None) is UserStatus.ACTIVE
    assert parse_status("BANNED") is UserStatus.BANNED
    with pytest.raises(ValueError):
        parse_status("suspended")
