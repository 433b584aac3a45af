import pytest

from ticketproxy.errors import NotFoundError, ValidationError
from ticketproxy.models import HospitalityAssignment, TicketHospitality
from ticketproxy.pricing import HospitalityResolver, Level, LookupContext, MarkupResolver
from ticketproxy.repositories import HospitalityRepository, MarkupRuleRepository, TicketMarkupRepository

SOCCER = {"sport_type": "soccer", "sport_name": "Soccer"}
PREMIER = dict(SOCCER, tournament_id="trn_pl", tournament_name="Premier League")
ARSENAL = dict(PREMIER, team_id="team_ars", team_name="Arsenal")
DERBY = dict(ARSENAL, event_id="evt_derby", event_name="North London Derby")
SEAT = dict(DERBY, ticket_id="tkt_cat1", ticket_name="Category 1")


@pytest.fixture
def rules(db):
    return MarkupRuleRepository(db)


@pytest.fixture
def legacy(db):
    return TicketMarkupRepository(db)


@pytest.fixture
def hospitality(db):
    return HospitalityRepository(db)


# -------------------------
# Markup rules
# -------------------------
def test_upsert_creates_then_updates_the_same_rule(rules):
    rule, created = rules.upsert_rule(dict(PREMIER, markup_type="fixed", markup_amount=10), admin_id=7)
    assert created
    assert rule.level == "tournament"
    assert rule.created_by == 7

    again, created = rules.upsert_rule(dict(PREMIER, markup_type="percentage", markup_amount=12.5), admin_id=8)

    assert not created
    assert again.id == rule.id
    assert again.markup_type == "percentage"
    assert again.markup_amount == 12.5
    assert again.created_by == 7
    assert again.updated_by == 8
    assert rules.list_rules()[1]["total_records"] == 1


def test_null_scope_columns_identify_distinct_rules(rules):
    sport, _ = rules.upsert_rule(dict(SOCCER, markup_amount=5))
    tournament, _ = rules.upsert_rule(dict(PREMIER, markup_amount=10))
    other_sport, _ = rules.upsert_rule({"sport_type": "tennis", "markup_amount": 3})

    assert len({sport.id, tournament.id, other_sport.id}) == 3


@pytest.mark.parametrize(
    "data",
    [
        {"markup_amount": 5},
        {"sport_type": "soccer", "ticket_id": "tkt_1", "markup_amount": 5},
        dict(SOCCER, markup_type="flat", markup_amount=5),
        dict(SOCCER, markup_amount=-1),
        dict(SOCCER, markup_type="percentage", markup_amount=1001),
        dict(SOCCER, markup_amount="lots"),
    ],
)
def test_upsert_rejects_invalid_rules(rules, data):
    with pytest.raises(ValidationError):
        rules.upsert_rule(data)
    assert rules.list_rules()[1]["total_records"] == 0


def test_update_and_delete_rule(rules):
    rule, _ = rules.upsert_rule(dict(ARSENAL, markup_amount=4))

    updated = rules.update_rule(rule.id, {"markup_amount": 6, "is_active": False}, admin_id=3)
    assert updated.markup_amount == 6
    assert updated.is_active is False
    assert updated.level == "team"

    rules.delete_rule(rule.id)
    with pytest.raises(NotFoundError):
        rules.get_rule(rule.id)
    with pytest.raises(NotFoundError):
        rules.delete_rule(rule.id)


def test_list_rules_orders_by_level_and_paginates(rules):
    rules.upsert_rule(dict(SEAT, markup_amount=1))
    rules.upsert_rule(dict(DERBY, markup_amount=2))
    rules.upsert_rule(dict(SOCCER, markup_amount=3))
    rules.upsert_rule(dict(PREMIER, markup_amount=4))
    rules.upsert_rule({"sport_type": "tennis", "markup_amount": 5})

    rows, meta = rules.list_rules(page=1, per_page=3)
    assert [r.level for r in rows] == ["sport", "sport", "tournament"]
    assert meta == {
        "current_page": 1,
        "per_page": 3,
        "total_records": 5,
        "total_pages": 2,
        "has_more": True,
    }

    rows, meta = rules.list_rules(page=2, per_page=3)
    assert [r.level for r in rows] == ["event", "ticket"]
    assert meta["has_more"] is False

    rows, meta = rules.list_rules({"sport_type": "tennis"})
    assert meta["total_records"] == 1

    rows, _ = rules.list_rules({"level": "event"})
    assert [r.event_id for r in rows] == ["evt_derby"]


def test_rules_by_sport(rules):
    rules.upsert_rule(dict(DERBY, markup_amount=2))
    rules.upsert_rule(dict(SOCCER, markup_amount=3))
    rules.upsert_rule({"sport_type": "tennis", "markup_amount": 5})

    assert [r.level for r in rules.rules_by_sport("soccer")] == ["sport", "event"]
    assert rules.rules_by_sport("golf") == []


def test_find_rule_matches_context(rules):
    rules.upsert_rule(dict(DERBY, markup_amount=2))
    rules.upsert_rule(dict(DERBY, event_id="evt_other", markup_amount=9))

    ctx = LookupContext.from_mapping(SEAT)
    assert rules.find_rule(Level.EVENT, ctx).markup_amount == 2
    assert rules.find_rule(Level.TICKET, ctx) is None
    assert rules.find_rule(Level.SPORT, ctx) is None


def test_find_rule_skips_inactive(rules):
    rule, _ = rules.upsert_rule(dict(SOCCER, markup_amount=3))
    rules.update_rule(rule.id, {"is_active": False})

    assert rules.find_rule(Level.SPORT, LookupContext(sport_type="soccer", ticket_id="t")) is None



def test_scopes_without_tournament_or_team_are_stored(rules):
    team, _ = rules.upsert_rule({"sport_type": "soccer", "team_id": "ManUtd", "markup_amount": 10})
    event, _ = rules.upsert_rule({"sport_type": "tennis", "tournament_id": "USO", "event_id": "E9", "markup_amount": 4})
    ticket, _ = rules.upsert_rule({"sport_type": "tennis", "event_id": "E9", "ticket_id": "T9", "markup_amount": 6})

    assert (team.level, team.tournament_id) == ("team", None)
    assert (event.level, event.team_id) == ("event", None)
    assert (ticket.level, ticket.tournament_id, ticket.team_id) == ("ticket", None, None)


def test_find_rule_treats_missing_coarser_ids_as_wildcards(rules):
    rules.upsert_rule(dict(ARSENAL, markup_amount=4))

    assert rules.find_rule(Level.TEAM, LookupContext(sport_type="soccer", team_id="team_ars")).markup_amount == 4
    assert rules.find_rule(Level.TEAM, LookupContext(sport_type="soccer", tournament_id="trn_fa", team_id="team_ars")) is None
    assert rules.find_rule(Level.TEAM, LookupContext(sport_type="tennis", team_id="team_ars")) is None


# -------------------------
# Legacy ticket markups
# -------------------------
def test_ticket_markup_batch_upsert(legacy):
    count = legacy.batch_upsert(
        "evt_1",
        [
            {"ticket_id": "t1", "markup_type": "fixed", "markup_price_usd": 15, "base_price_usd": 100},
            {"ticket_id": "t2", "markup_type": "percentage", "markup_percentage": 10, "base_price_usd": 250},
        ],
        admin_id=1,
    )
    assert count == 2

    t1 = legacy.get_markup_by_ticket("t1")
    assert (t1.markup_price_usd, t1.final_price_usd) == (15, 115)

    t2 = legacy.get_markup_by_ticket("t2")
    assert t2.markup_percentage == 10
    assert (t2.markup_price_usd, t2.final_price_usd) == (25, 275)

    legacy.batch_upsert("evt_1", [{"ticket_id": "t1", "markup_price_usd": 20, "base_price_usd": 100}])
    assert [m.final_price_usd for m in legacy.get_markups_by_event("evt_1")] == [120, 275]


@pytest.mark.parametrize(
    "row",
    [
        {"markup_price_usd": 5, "base_price_usd": 10},
        {"ticket_id": "t1", "markup_price_usd": 5},
        {"ticket_id": "t1", "markup_type": "percentage", "base_price_usd": 10},
        {"ticket_id": "t1", "markup_price_usd": -5, "base_price_usd": 10},
    ],
)
def test_ticket_markup_batch_is_all_or_nothing(legacy, row):
    good = {"ticket_id": "ok", "markup_price_usd": 1, "base_price_usd": 10}

    with pytest.raises(ValidationError):
        legacy.batch_upsert("evt_1", [good, row])

    assert legacy.get_markups_by_event("evt_1") == []


def test_ticket_markup_deletes(legacy):
    legacy.batch_upsert("evt_1", [
        {"ticket_id": "t1", "markup_price_usd": 1, "base_price_usd": 10},
        {"ticket_id": "t2", "markup_price_usd": 1, "base_price_usd": 10},
    ])
    legacy.batch_upsert("evt_2", [{"ticket_id": "t3", "markup_price_usd": 1, "base_price_usd": 10}])

    assert legacy.delete_by_ticket("t1") == 1
    assert legacy.delete_by_event("evt_1") == 1
    assert legacy.get_markups_by_event("evt_1") == []
    assert legacy.get_markup_by_ticket("t3") is not None
    with pytest.raises(NotFoundError):
        legacy.get_markup(999)


# -------------------------
# Hospitality
# -------------------------
def test_service_crud(hospitality):
    svc = hospitality.create_service({"name": " VIP Lounge ", "sort_order": 2}, admin_id=4)
    assert svc.name == "VIP Lounge"
    assert svc.is_active is True

    hospitality.update_service(svc.id, {"description": "Drinks included", "is_active": False})
    assert hospitality.get_service(svc.id).description == "Drinks included"
    assert hospitality.list_services(active_only=True) == []
    assert len(hospitality.list_services()) == 1

    with pytest.raises(ValidationError):
        hospitality.create_service({"name": "  "})
    with pytest.raises(NotFoundError):
        hospitality.update_service(999, {"name": "x"})


def test_assignment_upsert_is_idempotent_per_scope(hospitality):
    svc = hospitality.create_service({"name": "Lounge"})

    first = hospitality.upsert_assignment(dict(PREMIER, hospitality_id=svc.id))
    second = hospitality.upsert_assignment(dict(PREMIER, hospitality_id=svc.id, tournament_name="EPL"))

    assert first.id == second.id
    assert second.level == "tournament"
    assert second.tournament_name == "EPL"

    with pytest.raises(ValidationError):
        hospitality.upsert_assignment(dict(PREMIER))
    with pytest.raises(NotFoundError):
        hospitality.upsert_assignment(dict(PREMIER, hospitality_id=999))


def test_replace_and_remove_assignments_at_scope(hospitality):
    a, b, c = (hospitality.create_service({"name": n}) for n in ("A", "B", "C"))
    hospitality.batch_upsert_assignments(DERBY, [a.id, b.id])
    hospitality.upsert_assignment(dict(SOCCER, hospitality_id=a.id))

    deleted, inserted = hospitality.replace_assignments_at_scope(DERBY, [b.id, c.id])

    assert (deleted, inserted) == (2, 2)
    assert [x.hospitality_id for x in hospitality.assignments_at_scope(DERBY)] == [b.id, c.id]
    # other scopes are untouched
    assert [x.hospitality_id for x in hospitality.assignments_at_scope(SOCCER)] == [a.id]

    assert hospitality.remove_assignments_at_scope(DERBY, [c.id]) == 1
    assert hospitality.remove_assignments_at_scope(DERBY) == 1
    assert hospitality.assignments_at_scope(DERBY) == []


def test_list_assignments_filters(hospitality):
    svc = hospitality.create_service({"name": "Lounge"})
    hospitality.upsert_assignment(dict(SOCCER, hospitality_id=svc.id))
    hospitality.upsert_assignment(dict(DERBY, hospitality_id=svc.id))

    rows, meta = hospitality.list_assignments({"level": "event"})
    assert meta["total_records"] == 1
    assert rows[0].event_id == "evt_derby"

    rows, _ = hospitality.list_assignments()
    assert [r.level for r in rows] == ["sport", "event"]


def test_deleting_a_service_removes_its_assignments_and_links(db, hospitality):
    svc = hospitality.create_service({"name": "Lounge"})
    hospitality.upsert_assignment(dict(SOCCER, hospitality_id=svc.id))
    hospitality.assign_ticket_hospitalities("evt_1", "t1", [svc.id])

    hospitality.delete_service(svc.id)

    assert db.query(HospitalityAssignment).count() == 0
    assert db.query(TicketHospitality).count() == 0


def test_assign_ticket_hospitalities_replaces_links(hospitality):
    a, b = hospitality.create_service({"name": "A"}), hospitality.create_service({"name": "B"})

    assert hospitality.assign_ticket_hospitalities("evt_1", "t1", [a.id, a.id]) == (0, 1)
    assert hospitality.assign_ticket_hospitalities("evt_1", "t1", [b.id]) == (1, 1)
    assert [x.hospitality_id for x in hospitality.get_ticket_hospitalities("evt_1", "t1")] == [b.id]

    with pytest.raises(NotFoundError):
        hospitality.assign_ticket_hospitalities("evt_1", "t1", [999])
    # the failed replacement rolled back
    assert [x.hospitality_id for x in hospitality.get_ticket_hospitalities("evt_1", "t1")] == [b.id]


def test_stats(hospitality):
    a = hospitality.create_service({"name": "A"})
    b = hospitality.create_service({"name": "B", "is_active": False})
    hospitality.upsert_assignment(dict(SOCCER, hospitality_id=a.id))
    hospitality.upsert_assignment(dict(DERBY, hospitality_id=a.id))
    hospitality.upsert_assignment(dict(SEAT, hospitality_id=b.id))
    hospitality.assign_ticket_hospitalities("evt_1", "t1", [a.id])

    stats = hospitality.stats()

    assert stats["total_hospitalities"] == 2
    assert stats["active_hospitalities"] == 1
    assert stats["total_assignments"] == 3
    assert stats["legacy_assignments"] == 1
    assert stats["assignments_by_level"] == [
        {"level": "sport", "count": 1},
        {"level": "event", "count": 1},
        {"level": "ticket", "count": 1},
    ]
    assert stats["top_hospitalities"][0] == {"id": a.id, "name": "A", "assignment_count": 2}


# -------------------------
# Resolvers over the database
# -------------------------
def test_markup_resolution_end_to_end(rules, legacy):
    rules.upsert_rule(dict(SOCCER, markup_amount=5))
    rules.upsert_rule(dict(DERBY, markup_type="percentage", markup_amount=20))
    legacy.batch_upsert("evt_derby", [{"ticket_id": "tkt_cat1", "markup_price_usd": 1, "base_price_usd": 10}])
    resolver = MarkupResolver(rules, legacy)

    result = resolver.resolve_markup(LookupContext.from_mapping(dict(SEAT, base_price_usd=150)))
    assert (result["level"], result["markup_price_usd"], result["final_price_usd"]) == ("event", 30.0, 180.0)

    other = LookupContext.from_mapping(dict(SEAT, event_id="evt_cup", ticket_id="tkt_cup"))
    assert resolver.resolve_markup(other)["level"] == "sport"

    batch = resolver.resolve_markups_for_event(LookupContext.from_mapping(DERBY), ["tkt_cat1", "tkt_cat2"])
    assert {t: r["level"] for t, r in batch.items()} == {"tkt_cat1": "event", "tkt_cat2": "event"}


def test_team_rule_beats_sport_rule_without_tournament_in_context(rules, legacy):
    rules.upsert_rule({"sport_type": "soccer", "markup_type": "percentage", "markup_amount": 5})
    rules.upsert_rule({
        "sport_type": "soccer", "tournament_id": "EPL", "team_id": "ManUtd",
        "markup_type": "fixed", "markup_amount": 10,
    })
    resolver = MarkupResolver(rules, legacy)

    result = resolver.resolve_markup(
        LookupContext(sport_type="soccer", team_id="ManUtd", event_id="E1", ticket_id="T1", base_price_usd=100)
    )

    assert (result["level"], result["markup_type"], result["markup_amount"]) == ("team", "fixed", 10)
    assert result["final_price_usd"] == 110.0

    rival = LookupContext(sport_type="soccer", team_id="Liverpool", event_id="E1", ticket_id="T1")
    assert resolver.resolve_markup(rival)["level"] == "sport"


def test_team_rule_without_tournament_applies_in_any_tournament(rules, legacy):
    rules.upsert_rule({"sport_type": "soccer", "team_id": "ManUtd", "markup_amount": 10})
    resolver = MarkupResolver(rules, legacy)

    ctx = LookupContext(sport_type="soccer", tournament_id="UCL", team_id="ManUtd", event_id="E1", ticket_id="T1")
    assert resolver.resolve_markup(ctx)["level"] == "team"


def test_tennis_event_rule_resolves(rules, legacy):
    rules.upsert_rule({"sport_type": "tennis", "markup_type": "fixed", "markup_amount": 2})
    rules.upsert_rule({
        "sport_type": "tennis", "tournament_id": "USO", "event_id": "E9",
        "markup_type": "percentage", "markup_amount": 15,
    })
    resolver = MarkupResolver(rules, legacy)

    result = resolver.resolve_markup(
        LookupContext(sport_type="tennis", tournament_id="USO", event_id="E9", ticket_id="T9", base_price_usd=200)
    )
    assert (result["level"], result["final_price_usd"]) == ("event", 230.0)

    batch = resolver.resolve_markups_for_event(LookupContext(sport_type="tennis", event_id="E9"), ["T9", "T10"])
    assert {t: r["level"] for t, r in batch.items()} == {"T9": "event", "T10": "event"}


def test_hospitality_assignments_match_contexts_missing_coarser_ids(hospitality):
    lounge = hospitality.create_service({"name": "Lounge"})
    box = hospitality.create_service({"name": "Box"})
    hospitality.upsert_assignment(dict(ARSENAL, hospitality_id=lounge.id))
    hospitality.upsert_assignment({"sport_type": "tennis", "tournament_id": "USO", "event_id": "E9", "hospitality_id": box.id})
    resolver = HospitalityResolver(hospitality, hospitality)

    soccer = resolver.resolve_for_ticket(LookupContext(sport_type="soccer", team_id="team_ars", event_id="E1", ticket_id="T1"))
    tennis = resolver.resolve_for_ticket(LookupContext(sport_type="tennis", event_id="E9", ticket_id="T9"))

    assert [(i["name"], i["level"]) for i in soccer] == [("Lounge", "team")]
    assert [(i["name"], i["level"]) for i in tennis] == [("Box", "event")]


def test_hospitality_resolution_end_to_end(hospitality):
    lounge = hospitality.create_service({"name": "Lounge", "sort_order": 1})
    food = hospitality.create_service({"name": "Food", "sort_order": 2})
    closed = hospitality.create_service({"name": "Closed", "is_active": False})
    hospitality.upsert_assignment(dict(SOCCER, hospitality_id=lounge.id))
    hospitality.upsert_assignment(dict(DERBY, hospitality_id=lounge.id))
    hospitality.upsert_assignment(dict(PREMIER, hospitality_id=closed.id))
    hospitality.assign_ticket_hospitalities("evt_derby", "tkt_cat1", [food.id])
    resolver = HospitalityResolver(hospitality, hospitality)

    items = resolver.resolve_for_ticket(LookupContext.from_mapping(SEAT))

    assert [(i["name"], i["level"], i["source"]) for i in items] == [
        ("Lounge", "event", "rule"),
        ("Food", "ticket", "legacy"),
    ]
