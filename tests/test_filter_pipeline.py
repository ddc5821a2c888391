import pytest

from modstream.datatypes.moderation_datatypes import ViolationKind
from modstream.datatypes.policy import Policy
from modstream.moderation.filter_pipeline import FilterPipeline, find_invite


@pytest.fixture()
def pipeline() -> FilterPipeline:
    return FilterPipeline()


@pytest.mark.parametrize(
    "content, mentions",
    [
        ("FREE STUFF JOIN discord.gg/xyz", 0),
        ("badword https://example.com", 0),
        ("LOUD LOUD LOUD LOUD LOUD", 0),
        ("hi everyone", 20),
    ],
)
def test_disabled_policy_never_matches(pipeline, make_message, content, mentions) -> None:
    policy = Policy(
        enabled=False,
        banned_terms=frozenset({"badword"}),
        link_filter=True,
        caps_filter=True,
        max_mentions=1,
    )

    assert pipeline.evaluate(make_message(content, mention_count=mentions), policy) is None


def test_invite_link_is_reported(pipeline, make_message) -> None:
    violation = pipeline.evaluate(make_message("FREE STUFF JOIN discord.gg/xyz"), Policy())

    assert violation is not None
    assert violation.kind is ViolationKind.INVITE
    assert violation.reason == "Discord invite link detected"
    assert violation.evidence == "FREE STUFF JOIN discord.gg/xyz"


@pytest.mark.parametrize(
    "content",
    [
        "join discord.gg/abc",
        "join https://discord.io/abc",
        "discordapp.com/invite/abc",
        "https://discord.com/invite/AbC123",
        "DISCORD.ME/shouty",
    ],
)
def test_invite_hosts(make_message, content) -> None:
    assert find_invite(make_message(content), Policy()) is not None


def test_banned_term_is_case_insensitive_substring(pipeline, make_message) -> None:
    policy = Policy(banned_terms=frozenset({"heck"}))

    violation = pipeline.evaluate(make_message("What the HECKING heck"), policy)

    assert violation is not None
    assert violation.kind is ViolationKind.BANNED_TERM
    assert violation.reason == "Bad language detected"


def test_banned_term_takes_precedence_over_invite(pipeline, make_message) -> None:
    policy = Policy(banned_terms=frozenset({"scam"}))

    violation = pipeline.evaluate(make_message("scam here: discord.gg/xyz"), policy)

    assert violation.kind is ViolationKind.BANNED_TERM


def test_invite_takes_precedence_over_generic_link(pipeline, make_message) -> None:
    policy = Policy(link_filter=True)

    violation = pipeline.evaluate(make_message("https://discord.gg/xyz"), policy)

    assert violation.kind is ViolationKind.INVITE


def test_link_filter_only_when_enabled(pipeline, make_message) -> None:
    message = make_message("read https://example.com/post")

    assert pipeline.evaluate(message, Policy()) is None
    violation = pipeline.evaluate(message, Policy(link_filter=True))
    assert violation.kind is ViolationKind.LINK
    assert violation.reason == "Link detected"


def test_invite_filter_can_be_turned_off(pipeline, make_message) -> None:
    assert pipeline.evaluate(make_message("discord.gg/xyz"), Policy(invite_filter=False)) is None


def test_caps_requires_more_than_ten_characters(pipeline, make_message) -> None:
    policy = Policy(caps_filter=True)

    assert pipeline.evaluate(make_message("SHORT CAPS"), policy) is None  # exactly 10
    violation = pipeline.evaluate(make_message("HELLO WORLD"), policy)
    assert violation.kind is ViolationKind.EXCESSIVE_CAPS
    assert violation.reason == "Excessive caps detected"


def test_caps_ratio_must_exceed_threshold(pipeline, make_message) -> None:
    policy = Policy(caps_filter=True, caps_ratio_threshold=0.5)

    assert pipeline.evaluate(make_message("ABCDEFabcdef"), policy) is None
    assert pipeline.evaluate(make_message("ABCDEFGabcde"), policy) is not None


def test_caps_filter_off_by_default(pipeline, make_message) -> None:
    assert pipeline.evaluate(make_message("THIS IS VERY LOUD"), Policy()) is None


def test_mention_spam(pipeline, make_message) -> None:
    policy = Policy(max_mentions=5)

    assert pipeline.evaluate(make_message("hey", mention_count=5), policy) is None
    violation = pipeline.evaluate(make_message("hey", mention_count=6), policy)
    assert violation.kind is ViolationKind.MENTION_SPAM
    assert violation.reason == "Mention spam detected"


def test_zero_max_mentions_disables_check(pipeline, make_message) -> None:
    assert pipeline.evaluate(make_message("hey", mention_count=50), Policy(max_mentions=0)) is None


def test_evidence_is_truncated(pipeline, make_message) -> None:
    content = "discord.gg/xyz " + "a" * 300

    violation = pipeline.evaluate(make_message(content), Policy())

    assert len(violation.evidence) == 100


def test_failing_check_is_skipped(make_message) -> None:
    def broken(message, policy):
        raise RuntimeError("boom")

    pipeline = FilterPipeline(checks=[("broken", broken), ("invite", find_invite)])

    violation = pipeline.evaluate(make_message("discord.gg/xyz"), Policy())

    assert violation.kind is ViolationKind.INVITE


def test_clean_message(pipeline, make_message) -> None:
    policy = Policy(banned_terms=frozenset({"heck"}), link_filter=True, caps_filter=True)

    assert pipeline.evaluate(make_message("just a normal message", mention_count=1), policy) is None
