# tests/unit/test_session_flow.py
import asyncio

import pytest

from bowlbuilder.core.models import RestrictionCheck
from bowlbuilder.services.exceptions import (
    CardinalityError, RemoteError, RestrictionError, StepIncompleteError, ValidationError,
)
from bowlbuilder.services.session import BowlSession
from bowlbuilder.services.store_repo import JSONStoreSelectionRepo


def test_full_build_on_first_template(make_session, backend):
    async def scenario():
        s = await make_session()
        assert s.store_id == "st1"
        assert [i.id for i in s.step_ingredients] == ["a1", "a2", "a3"]

        item = await s.add_ingredient("a1")
        assert item.quantity == 50  # 1 portion x 50 g
        await s.next_step()
        assert s.sequencer.current.id == "sB"
        b_item = await s.add_ingredient("b1")
        assert b_item.quantity == 200  # 2 portions x default 100 g
        await s.next_step()
        done = await s.next_step()
        return s, done

    s, done = asyncio.run(scenario())
    assert done is None
    assert s.sequencer.completed
    assert backend.count("create_order") == 1
    assert backend.count("create_bowl") == 1
    # a1: 10 * 50 / 100 = 5; b1: 10 * 200 / 100 = 20
    assert s.order_total == 25
    assert s.bowl_line_price == 25
    assert {it.ingredient_id for it in s.bowl_items} == {"a1", "b1"}
    assert s.reconciler.last_outcome.status == "ok"


def test_next_blocked_while_minimum_unmet(make_session):
    async def scenario():
        s = await make_session()
        with pytest.raises(StepIncompleteError):
            await s.next_step()
        return s

    s = asyncio.run(scenario())
    assert s.sequencer.current_index == 0


def test_concurrent_duplicate_add_creates_one_item(make_session, backend):
    async def scenario():
        s = await make_session()
        return s, await asyncio.gather(s.add_ingredient("a1"), s.add_ingredient("a1"))

    s, results = asyncio.run(scenario())
    assert sum(1 for r in results if r is not None) == 1
    assert backend.count("create_bowl_item") == 1
    assert s.ledger.picked("sA") == ["a1"]


def test_repeat_add_is_a_noop(make_session, backend):
    async def scenario():
        s = await make_session()
        await s.add_ingredient("a1")
        return await s.add_ingredient("a1")

    assert asyncio.run(scenario()) is None
    assert backend.count("create_bowl_item") == 1


def test_full_step_rejects_without_remote_call(make_session, backend):
    async def scenario():
        s = await make_session()
        await s.add_ingredient("a1")
        await s.next_step()
        await s.add_ingredient("b1")
        before = len(backend.calls)
        with pytest.raises(CardinalityError) as exc:
            await s.add_ingredient("b2")
        return exc.value, len(backend.calls) - before

    err, new_calls = asyncio.run(scenario())
    assert err.step_id == "sB" and err.limit == 1
    assert new_calls == 0


def test_concurrent_adds_respect_capacity(make_session, backend):
    async def scenario():
        s = await make_session()
        return await asyncio.gather(
            s.add_ingredient("a1"), s.add_ingredient("a2"), s.add_ingredient("a3"),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    assert sum(1 for r in results if isinstance(r, CardinalityError)) == 1
    assert backend.count("create_bowl_item") == 2


def test_add_without_active_step(make_session):
    async def scenario():
        s = await make_session(start=False)
        await s.add_ingredient("a1")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_restricted_ingredient_is_rejected(make_session, backend):
    backend.restricted["a2"] = "Contains nuts"

    async def scenario():
        s = await make_session()
        with pytest.raises(RestrictionError) as exc:
            await s.add_ingredient("a2")
        return s, exc.value

    s, err = asyncio.run(scenario())
    assert "nuts" in str(err)
    assert not s.ledger.contains("sA", "a2")
    assert backend.count("create_bowl_item") == 0


def test_unavailable_restriction_check_does_not_block(make_session, backend):
    backend.fail["validate_addition"] = RemoteError("not deployed", status_code=404)

    async def scenario():
        s = await make_session()
        return await s.add_ingredient("a1")

    assert asyncio.run(scenario()) is not None


def test_quantity_update_round_trip(make_session, backend):
    async def scenario():
        s = await make_session()
        item = await s.add_ingredient("a1")
        same = await s.update_item_qty(item.id, 50.004)
        negative = await s.update_item_qty(item.id, -1)
        changed = await s.update_item_qty(item.id, 75)
        return s, item, same, negative, changed

    s, item, same, negative, changed = asyncio.run(scenario())
    assert (same, negative, changed) == (False, False, True)
    assert backend.count("update_bowl_item") == 1
    assert s.reconciler.find_item(item.id).quantity == 75
    assert s.order_total == 7.5


def test_update_of_unknown_item_is_noop(make_session, backend):
    async def scenario():
        s = await make_session()
        return await s.update_item_qty("nope", 10)

    assert asyncio.run(scenario()) is False
    assert backend.count("update_bowl_item") == 0


def test_failed_update_still_reconciles(make_session, backend):
    async def scenario():
        s = await make_session()
        item = await s.add_ingredient("a1")
        backend.fail["update_bowl_item"] = RemoteError("write failed", status_code=500)
        recalcs = backend.count("recalculate_order")
        with pytest.raises(RemoteError):
            await s.update_item_qty(item.id, 80)
        return backend.count("recalculate_order") - recalcs

    assert asyncio.run(scenario()) == 1


def test_remove_item_moves_to_owning_step(make_session, backend):
    async def scenario():
        s = await make_session()
        a_item = await s.add_ingredient("a1")
        await s.next_step()
        await s.add_ingredient("b1")
        owner = await s.remove_item(a_item.id)
        return s, a_item, owner

    s, a_item, owner = asyncio.run(scenario())
    assert owner.id == "sA"
    assert s.sequencer.current_index == 0
    assert not s.ledger.contains("sA", "a1")
    assert a_item.id not in {it.id for it in s.bowl_items}
    assert s.order_total == 20


def test_remove_looks_up_uncached_ingredient(make_session, backend):
    async def scenario():
        s = await make_session()
        await s.add_ingredient("a1")
        await s.next_step()
        b_item = await s.add_ingredient("b1")
        s.cache.clear()
        owner = await s.remove_item(b_item.id)
        return s, owner

    s, owner = asyncio.run(scenario())
    assert backend.count("get_ingredient") == 1
    assert owner.id == "sB"
    assert s.ledger.count("sB") == 0


def test_remove_proceeds_when_lookup_fails(make_session, backend):
    async def scenario():
        s = await make_session()
        item = await s.add_ingredient("a1")
        s.cache.clear()
        backend.fail["get_ingredient"] = RemoteError("lookup down")
        owner = await s.remove_item(item.id)
        return s, item, owner

    s, item, owner = asyncio.run(scenario())
    assert owner is None
    assert backend.count("delete_bowl_item") == 1
    assert item.id not in backend.items
    assert s.bowl_items == []


def test_template_switch_clears_flow_state(make_session, backend):
    async def scenario():
        s = await make_session()
        await s.add_ingredient("a1")
        steps = await s.select_template("T2")
        return s, steps

    s, steps = asyncio.run(scenario())
    assert [st.id for st in steps] == ["s2"]
    assert backend.count("list_template_steps") == 1  # T2 embeds its steps
    assert s.order_id is None and s.bowl_id is None
    assert s.ledger.as_dict() == {}
    assert s.bowl_items == [] and s.order_total == 0
    assert s.sequencer.current_index == -1


def test_unknown_template_rejected(make_session):
    async def scenario():
        s = await make_session(template_id=None)
        await s.select_template("nope")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_store_switch_resets_and_is_remembered(make_session, backend, settings):
    repo = JSONStoreSelectionRepo(settings)

    async def scenario():
        s = await make_session(store_repo=repo)
        await s.add_ingredient("a1")
        s.select_store("st2")
        fresh = BowlSession(backend, "u1", settings=settings, store_repo=repo)
        await fresh.hydrate()
        return s, fresh

    s, fresh = asyncio.run(scenario())
    assert s.order_id is None and s.ledger.count("sA") == 0
    assert fresh.store_id == "st2"


def test_unknown_store_rejected(make_session):
    async def scenario():
        s = await make_session()
        s.select_store("st9")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_hydrate_survives_one_failed_catalog_read(backend, settings):
    backend.fail["list_categories"] = RemoteError("categories down")
    session = BowlSession(backend, "u1", settings=settings)
    catalog = asyncio.run(session.hydrate())
    assert catalog.categories == []
    assert [t.id for t in catalog.templates] == ["T1", "T2"]
    assert session.store_id == "st1"


def test_confirm_requires_an_order(make_session, backend):
    async def scenario():
        s = await make_session()
        with pytest.raises(ValidationError):
            await s.confirm_order()
        await s.add_ingredient("a1")
        return await s.confirm_order()

    outcome = asyncio.run(scenario())
    assert outcome.status == "ok"
    assert next(iter(backend.orders.values())).status == "CONFIRMED"


def test_reorder_places_by_category_and_reports_skips(make_session, backend):
    async def scenario():
        s = await make_session(template_id=None)
        skipped = await s.reorder("T1", ["a1", "b1", "b2", "zz", "c1"])
        return s, skipped

    s, skipped = asyncio.run(scenario())
    assert skipped == ["b2", "zz"]
    assert s.ledger.as_dict() == {"sA": ["a1"], "sB": ["b1"], "sC": ["c1"]}
    assert s.sequencer.current_index == 0
    assert backend.count("create_order") == 1


def test_snapshot_reports_progress(make_session):
    async def scenario():
        s = await make_session()
        await s.add_ingredient("a1")
        return s.snapshot()

    snap = asyncio.run(scenario())
    assert snap.template_id == "T1"
    assert snap.current_step_index == 0
    assert [(p.step_id, p.selected, p.can_advance) for p in snap.steps] == [
        ("sA", 1, True), ("sB", 0, False), ("sC", 0, True),
    ]
    dumped = snap.model_dump(by_alias=True)
    assert dumped["orderTotal"] == 5


def test_store_switch_during_add_fails_the_add(make_session, backend):
    async def scenario():
        s = await make_session()
        adding = asyncio.create_task(s.add_ingredient("a1"))
        await asyncio.sleep(0)
        s.select_store("st2")
        with pytest.raises(ValidationError):
            await adding
        return s

    s = asyncio.run(scenario())
    assert s.ledger.as_dict() == {}
    assert s.order_id is None
    assert backend.count("create_bowl_item") == 0


def test_template_switch_mid_add_leaves_new_flow_clean(make_session, backend):
    async def scenario():
        s = await make_session()
        await s.add_ingredient("a1")

        async def switch_then_allow(bowl_id, ingredient_id):
            await s.select_template("T2")
            return RestrictionCheck(valid=True)

        backend.validate_addition = switch_then_allow
        with pytest.raises(ValidationError):
            await s.add_ingredient("a2")
        return s

    s = asyncio.run(scenario())
    assert s.ledger.as_dict() == {}
    assert s.template.id == "T2"
    assert backend.count("create_bowl_item") == 1
