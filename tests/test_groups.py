import pytest

from conftest import graph_error
from ticket_provision.groups import GroupResolver, group_kind
from ticket_provision.models import (
    REASON_AMBIGUOUS,
    REASON_DISTRIBUTION_LIST,
    REASON_MAIL_ENABLED_SECURITY,
    REASON_NOT_FOUND,
    GroupKind,
    ProvisioningResult,
)


@pytest.mark.parametrize(
    "group_types, mail_enabled, security_enabled, kind, addable, reason",
    [
        (["Unified"], True, False, GroupKind.UNIFIED, True, ""),
        ([], False, True, GroupKind.SECURITY_GROUP, True, ""),
        ([], True, False, GroupKind.DISTRIBUTION_LIST, False, REASON_DISTRIBUTION_LIST),
        ([], True, True, GroupKind.MAIL_ENABLED_SECURITY_GROUP, False, REASON_MAIL_ENABLED_SECURITY),
    ],
)
def test_mail_lookup_classification_table(
    directory, group_types, mail_enabled, security_enabled, kind, addable, reason
):
    directory.add_group(
        id="g1",
        mail="team@contoso.com",
        groupTypes=group_types,
        mailEnabled=mail_enabled,
        securityEnabled=security_enabled,
    )

    classification = GroupResolver(directory).classify("team@contoso.com")

    assert classification.exists is True
    assert classification.kind is kind
    assert classification.addable is addable
    assert classification.reason == reason
    assert classification.directory_id == "g1"


def test_mail_lookup_not_found(directory):
    classification = GroupResolver(directory).classify("nobody@contoso.com")

    assert classification.exists is False
    assert classification.addable is False
    assert classification.reason == REASON_NOT_FOUND


def test_unified_group_wins_regardless_of_flags():
    assert group_kind({"groupTypes": ["Unified"], "mailEnabled": True, "securityEnabled": True}) is GroupKind.UNIFIED


def test_display_name_lookup_requires_exactly_one_match(directory):
    directory.add_group(id="g1", displayName="Engineering Team")
    directory.add_group(id="g2", displayName="Sales")
    directory.add_group(id="g3", displayName="Sales")
    resolver = GroupResolver(directory)

    single = resolver.classify("Engineering Team")
    ambiguous = resolver.classify("Sales")
    missing = resolver.classify("Nope")

    assert (single.addable, single.directory_id) == (True, "g1")
    assert (ambiguous.addable, ambiguous.reason) == (False, REASON_AMBIGUOUS)
    assert (missing.addable, missing.reason) == (False, REASON_NOT_FOUND)


def test_display_name_lookup_does_not_use_mail_filter(directory):
    directory.add_group(id="g1", displayName="R&D")

    GroupResolver(directory).classify("R&D")

    assert directory.call_names() == ["find_groups_by_display_name"]


def test_every_group_gets_one_outcome_and_processing_continues(directory):
    directory.add_group(id="g-eng", displayName="Engineering Team")
    directory.add_group(id="g-dl", mail="all@contoso.com", mailEnabled=True, securityEnabled=False)
    directory.add_group(id="g-m365", mail="cnc@contoso.com", groupTypes=["Unified"], mailEnabled=True)
    result = ProvisioningResult()

    GroupResolver(directory).add_user_to_groups(
        "u1", ["Engineering Team", "all@contoso.com", "Missing Group", "cnc@contoso.com"], result
    )

    assert [(o.group_name, o.succeeded, o.reason) for o in result.group_outcomes] == [
        ("Engineering Team", True, ""),
        ("all@contoso.com", False, REASON_DISTRIBUTION_LIST),
        ("Missing Group", False, REASON_NOT_FOUND),
        ("cnc@contoso.com", True, ""),
    ]
    assert directory.memberships == {"g-eng": ["u1"], "g-m365": ["u1"]}


def test_transport_fault_on_add_is_recorded(directory):
    directory.add_group(id="g1", displayName="A")
    directory.add_group(id="g2", displayName="B")
    directory.failures["add_group_member"] = graph_error(403, "Insufficient privileges")
    result = ProvisioningResult()

    GroupResolver(directory).add_user_to_groups("u1", ["A", "B"], result)

    assert [o.succeeded for o in result.group_outcomes] == [False, False]
    assert "Insufficient privileges" in result.group_outcomes[0].reason


def test_transport_fault_on_lookup_is_recorded(directory):
    directory.failures["find_groups_by_display_name"] = graph_error(503, "unavailable")
    result = ProvisioningResult()

    GroupResolver(directory).add_user_to_groups("u1", ["A"], result)

    assert len(result.group_outcomes) == 1
    assert result.group_outcomes[0].succeeded is False
    assert result.group_outcomes[0].reason.startswith("lookup failed")
