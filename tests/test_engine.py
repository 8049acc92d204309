"""
Unit tests for the reconciliation engine, run against the simulated provider
"""

import os
import sys
import tempfile
import threading
import time
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from reconciler.diff import Action
from reconciler.engine import Engine, retry_with_backoff
from reconciler.errors import ApplyError, PlanError, ProviderError, StateLockedError, ThrottlingError
from reconciler.loader import load_document, parse_document
from reconciler.providers import ProviderRegistry, simulated_aws
from reconciler.state import StateStore

EXAMPLES = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "examples")


def network(vpc_cidr="10.0.0.0/16", tags=None, vpc_lifecycle=None, with_subnet=True, with_eip=False):
    resources = {
        "aws_vpc.main": {"properties": {"cidr_block": vpc_cidr, "tags": tags or {}}},
    }
    if vpc_lifecycle:
        resources["aws_vpc.main"]["lifecycle"] = vpc_lifecycle
    if with_subnet:
        resources["aws_subnet.a"] = {"properties": {"vpc_id": "${aws_vpc.main.id}", "cidr_block": "10.0.0.0/24"}}
    if with_eip:
        resources["aws_eip.nat"] = {"properties": {"domain": "vpc"}}
    return parse_document({
        "resources": resources,
        "outputs": {"vpc_id": "${aws_vpc.main.id}"},
    })


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.provider = simulated_aws()
        self.store = StateStore(os.path.join(self.tmp.name, "state.json"))
        self.sleeps = []
        self.events = []
        self.engine = self.make_engine()

    def make_engine(self, **kwargs):
        kwargs.setdefault("parallelism", 4)
        return Engine(ProviderRegistry([self.provider]), self.store,
                      sleep=self.sleeps.append,
                      listener=lambda address, operation, status: self.events.append((address, operation, status)),
                      **kwargs)

    def call_index(self, operation, resource_type, resource_id=""):
        return self.provider.calls.index((operation, resource_type, resource_id))

    def recorded_id(self, address):
        return self.store.load().resources[address].id


class TestApply(EngineTestCase):

    def test_create_in_dependency_order(self):
        result = self.engine.apply(network())

        self.assertTrue(result.ok)
        self.assertEqual(result.applied, ["aws_vpc.main", "aws_subnet.a"])
        state = self.store.load()
        vpc_id = state.resources["aws_vpc.main"].id
        self.assertTrue(vpc_id.startswith("vpc-"))
        self.assertEqual(state.resources["aws_subnet.a"].inputs["vpc_id"], vpc_id)
        self.assertEqual(state.resources["aws_subnet.a"].dependencies, ["aws_vpc.main"])
        self.assertEqual(result.outputs, {"vpc_id": vpc_id})
        self.assertEqual(self.engine.outputs(), {"vpc_id": vpc_id})

    def test_second_plan_is_empty(self):
        self.engine.apply(network())

        plan = self.engine.plan(network())

        self.assertFalse(plan.has_changes)

    def test_update_in_place(self):
        self.engine.apply(network(tags={"Env": "dev"}))
        vpc_id = self.recorded_id("aws_vpc.main")

        plan = self.engine.plan(network(tags={"Env": "prod"}))
        self.assertEqual(plan.changes["aws_vpc.main"].action, Action.UPDATE)
        result = self.engine.apply(network(tags={"Env": "prod"}), plan=plan)

        self.assertTrue(result.ok)
        self.assertEqual(self.recorded_id("aws_vpc.main"), vpc_id)
        self.assertEqual(self.provider.objects()[vpc_id]["outputs"]["tags"], {"Env": "prod"})

    def test_replace_deletes_before_create(self):
        self.engine.apply(network(with_subnet=False))
        old_id = self.recorded_id("aws_vpc.main")

        result = self.engine.apply(network(vpc_cidr="10.1.0.0/16", with_subnet=False))

        self.assertTrue(result.ok)
        new_id = self.recorded_id("aws_vpc.main")
        self.assertNotEqual(new_id, old_id)
        creates = [i for i, call in enumerate(self.provider.calls) if call[:2] == ("create", "aws_vpc")]
        self.assertLess(self.call_index("delete", "aws_vpc", old_id), creates[1])
        self.assertEqual(list(self.provider.objects("aws_vpc")), [new_id])

    def test_create_before_destroy(self):
        lifecycle = {"create_before_destroy": True}
        self.engine.apply(network(with_subnet=False, vpc_lifecycle=lifecycle))
        old_id = self.recorded_id("aws_vpc.main")

        result = self.engine.apply(network(vpc_cidr="10.1.0.0/16", with_subnet=False, vpc_lifecycle=lifecycle))

        self.assertTrue(result.ok)
        creates = [i for i, call in enumerate(self.provider.calls) if call[:2] == ("create", "aws_vpc")]
        self.assertLess(creates[1], self.call_index("delete", "aws_vpc", old_id))
        self.assertEqual(list(self.provider.objects("aws_vpc")), [self.recorded_id("aws_vpc.main")])

    def test_replacement_cascades_to_dependents(self):
        self.engine.apply(network())

        result = self.engine.apply(network(vpc_cidr="10.1.0.0/16"))

        self.assertTrue(result.ok)
        state = self.store.load()
        self.assertEqual(state.resources["aws_subnet.a"].inputs["vpc_id"], state.resources["aws_vpc.main"].id)
        self.assertEqual(len(self.provider.objects("aws_vpc")), 1)
        self.assertEqual(len(self.provider.objects("aws_subnet")), 1)

    def test_orphan_deleted(self):
        self.engine.apply(network(with_eip=True))
        eip_id = self.recorded_id("aws_eip.nat")

        result = self.engine.apply(network())

        self.assertIn("aws_eip.nat", result.applied)
        self.assertNotIn("aws_eip.nat", self.store.load().resources)
        self.assertNotIn(eip_id, self.provider.objects())

    def test_listener_events(self):
        self.engine.apply(network(with_subnet=False))

        self.assertIn(("aws_vpc.main", "create", "started"), self.events)
        self.assertIn(("aws_vpc.main", "create", "done"), self.events)


class TestFailures(EngineTestCase):

    def test_failure_skips_dependents(self):
        self.provider.inject_fault("aws_vpc")

        result = self.engine.apply(network(with_eip=True))

        self.assertFalse(result.ok)
        self.assertIn("aws_vpc.main", result.failed)
        self.assertEqual(result.skipped, ["aws_subnet.a"])
        self.assertIn("aws_eip.nat", result.applied)
        self.assertEqual(sorted(self.store.load().resources), ["aws_eip.nat"])
        self.assertIn(("aws_vpc.main", "apply", "failed"), self.events)
        self.assertIn(("aws_subnet.a", "apply", "skipped"), self.events)
        with self.assertRaises(ApplyError):
            result.raise_for_failures()

    def test_partial_apply_resumes(self):
        self.provider.inject_fault("aws_subnet", times=1)
        first = self.engine.apply(network())
        self.assertFalse(first.ok)

        second = self.engine.apply(network())

        self.assertTrue(second.ok)
        self.assertEqual(second.applied, ["aws_subnet.a"])

    def test_rollback_removes_created_resources(self):
        engine = self.make_engine(rollback_on_failure=True)
        self.provider.inject_fault("aws_subnet")

        result = engine.apply(network())

        self.assertEqual(result.rolled_back, ["aws_vpc.main"])
        self.assertEqual(self.store.load().resources, {})
        self.assertEqual(self.provider.objects(), {})

    def test_rollback_keeps_preexisting_resources(self):
        self.engine.apply(network(with_subnet=False))
        engine = self.make_engine(rollback_on_failure=True)
        self.provider.inject_fault("aws_subnet")

        result = engine.apply(network())

        self.assertEqual(result.rolled_back, [])
        self.assertIn("aws_vpc.main", self.store.load().resources)

    def test_failed_deposed_delete_is_retried(self):
        lifecycle = {"create_before_destroy": True}
        self.engine.apply(network(with_subnet=False, vpc_lifecycle=lifecycle))
        old_id = self.recorded_id("aws_vpc.main")
        self.provider.inject_fault("aws_vpc", "delete", times=1)
        document = network(vpc_cidr="10.1.0.0/16", with_subnet=False, vpc_lifecycle=lifecycle)

        first = self.engine.apply(document)

        self.assertIn("aws_vpc.main", first.failed)
        self.assertEqual(self.store.load().resources["aws_vpc.main"].deposed, [old_id])
        self.assertIn(old_id, self.provider.objects("aws_vpc"))

        plan = self.engine.plan(document)
        self.assertTrue(plan.has_changes)
        self.assertEqual(plan.changes["aws_vpc.main"].action, Action.NOOP)
        self.assertEqual(plan.changes["aws_vpc.main"].deposed, [old_id])
        self.assertEqual(plan.summary(), "Plan: 0 to add, 0 to change, 1 to destroy.")

        second = self.engine.apply(document, plan=plan)

        self.assertTrue(second.ok)
        new_id = self.recorded_id("aws_vpc.main")
        self.assertEqual(list(self.provider.objects("aws_vpc")), [new_id])
        self.assertEqual(self.store.load().resources["aws_vpc.main"].deposed, [])
        self.assertFalse(self.engine.plan(document).has_changes)

    def test_destroy_removes_deposed_objects(self):
        lifecycle = {"create_before_destroy": True}
        self.engine.apply(network(with_subnet=False, vpc_lifecycle=lifecycle))
        self.provider.inject_fault("aws_vpc", "delete", times=1)
        document = network(vpc_cidr="10.1.0.0/16", with_subnet=False, vpc_lifecycle=lifecycle)
        self.engine.apply(document)

        result = self.engine.destroy(document)

        self.assertTrue(result.ok)
        self.assertEqual(self.provider.objects(), {})
        self.assertEqual(self.store.load().resources, {})

    def test_throttling_is_retried(self):
        self.provider.throttle("aws_vpc", times=2, operation="create")

        result = self.engine.apply(network(with_subnet=False))

        self.assertTrue(result.ok)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_throttling_gives_up(self):
        engine = self.make_engine(max_retries=2)
        self.provider.throttle("aws_vpc", times=10, operation="create")

        result = engine.apply(network(with_subnet=False))

        self.assertIn("aws_vpc.main", result.failed)
        self.assertEqual(len(self.sleeps), 2)


class TestRefresh(EngineTestCase):

    def test_drift_is_corrected(self):
        self.engine.apply(network(tags={"Env": "dev"}))
        vpc_id = self.recorded_id("aws_vpc.main")
        self.provider.modify_object(vpc_id, tags={"Env": "hacked"})

        plan = self.engine.plan(network(tags={"Env": "dev"}))

        self.assertEqual(plan.changes["aws_vpc.main"].action, Action.UPDATE)
        self.engine.apply(network(tags={"Env": "dev"}), plan=plan)
        self.assertEqual(self.provider.objects()[vpc_id]["outputs"]["tags"], {"Env": "dev"})

    def test_no_refresh_ignores_drift(self):
        self.engine.apply(network(tags={"Env": "dev"}))
        self.provider.modify_object(self.recorded_id("aws_vpc.main"), tags={"Env": "hacked"})

        plan = self.engine.plan(network(tags={"Env": "dev"}), refresh=False)

        self.assertFalse(plan.has_changes)

    def test_deleted_out_of_band_is_recreated(self):
        self.engine.apply(network())
        self.provider.remove_object(self.recorded_id("aws_vpc.main"))

        plan = self.engine.plan(network())

        self.assertEqual(plan.changes["aws_vpc.main"].action, Action.CREATE)
        self.assertEqual(plan.changes["aws_subnet.a"].action, Action.REPLACE)


    def test_read_failure_is_recorded_during_apply(self):
        self.engine.apply(network(with_subnet=False))
        self.provider.inject_fault("aws_vpc", "read", times=1)

        result = self.engine.apply(network(tags={"Env": "prod"}, with_subnet=False, with_eip=True))

        self.assertEqual(list(result.failed), ["aws_vpc.main"])
        self.assertIn("refresh failed", result.failed["aws_vpc.main"])
        self.assertIn("aws_eip.nat", result.applied)
        self.assertEqual(self.store.load().resources["aws_vpc.main"].inputs["tags"], {})
        self.assertNotIn("update", [call[0] for call in self.provider.calls])
        self.assertFalse(self.store.is_locked())

    def test_read_failure_during_plan_raises(self):
        self.engine.apply(network(with_subnet=False))
        self.provider.inject_fault("aws_vpc", "read", times=1)

        with self.assertRaises(ProviderError):
            self.engine.plan(network(with_subnet=False))
        self.assertFalse(self.store.is_locked())


class TestDestroy(EngineTestCase):

    def test_destroy_in_reverse_order(self):
        self.engine.apply(network())
        vpc_id = self.recorded_id("aws_vpc.main")
        subnet_id = self.recorded_id("aws_subnet.a")

        result = self.engine.destroy(network())

        self.assertTrue(result.ok)
        self.assertLess(self.call_index("delete", "aws_subnet", subnet_id),
                        self.call_index("delete", "aws_vpc", vpc_id))
        state = self.store.load()
        self.assertEqual(state.resources, {})
        self.assertEqual(state.outputs, {})
        self.assertEqual(self.provider.objects(), {})

    def test_prevent_destroy(self):
        document = network(with_subnet=False, vpc_lifecycle={"prevent_destroy": True})
        self.engine.apply(document)

        with self.assertRaises(PlanError):
            self.engine.destroy(document)


class TestLockingAndPlans(EngineTestCase):

    def test_stale_plan_rejected(self):
        plan = self.engine.plan(network())
        self.engine.apply(network())

        with self.assertRaisesRegex(PlanError, "plan again"):
            self.engine.apply(network(), plan=plan)

    def test_locked_state(self):
        self.store.acquire("someone else")
        self.addCleanup(self.store.release)

        with self.assertRaises(StateLockedError):
            self.engine.plan(network())

    def test_lock_released_after_apply(self):
        self.engine.apply(network())
        self.assertFalse(self.store.is_locked())

    def test_parallelism_must_be_positive(self):
        with self.assertRaises(ValueError):
            self.make_engine(parallelism=0)


class TestParallelism(EngineTestCase):

    def test_independent_resources_run_concurrently(self):
        document = parse_document({
            "resources": {f"aws_vpc.v{i}": {"properties": {"cidr_block": f"10.{i}.0.0/16"}} for i in range(6)},
        })
        engine = Engine(ProviderRegistry([self.provider]), self.store, parallelism=3)
        create = self.provider.create
        lock = threading.Lock()
        running = [0]
        peak = [0]

        def slow_create(resource_type, inputs):
            with lock:
                running[0] += 1
                peak[0] = max(peak[0], running[0])
            try:
                time.sleep(0.05)
                return create(resource_type, inputs)
            finally:
                with lock:
                    running[0] -= 1

        self.provider.create = slow_create

        result = engine.apply(document)

        self.assertTrue(result.ok)
        self.assertEqual(len(result.applied), 6)
        self.assertGreater(peak[0], 1)
        self.assertLessEqual(peak[0], 3)


class TestRetryWithBackoff(unittest.TestCase):

    def test_non_retryable_raises_immediately(self):
        calls = []

        def fail():
            calls.append(1)
            raise ProviderError("denied")

        with self.assertRaises(ProviderError):
            retry_with_backoff(fail, max_retries=3, sleep=lambda delay: None)
        self.assertEqual(len(calls), 1)

    def test_backoff_doubles(self):
        sleeps = []
        attempts = iter([ThrottlingError("slow down"), ThrottlingError("slow down"), None])

        def flaky():
            error = next(attempts)
            if error:
                raise error
            return "ok"

        self.assertEqual(retry_with_backoff(flaky, initial_delay=0.5, sleep=sleeps.append), "ok")
        self.assertEqual(sleeps, [0.5, 1.0])


class TestExampleStack(EngineTestCase):

    def test_example_applies_and_settles(self):
        document = load_document(os.path.join(EXAMPLES, "eks-stack.yaml"),
                                 var_files=[os.path.join(EXAMPLES, "dev.vars.yaml")])

        result = self.engine.apply(document)

        self.assertTrue(result.ok, result.failed)
        self.assertEqual(result.outputs["cluster_name"], "eks-foundation-dev")
        self.assertTrue(result.outputs["cluster_endpoint"].startswith("https://"))
        self.assertEqual(result.outputs["node_group_names"],
                         ["eks-foundation-dev-general", "eks-foundation-dev-spot"])
        self.assertEqual(result.outputs["kubeconfig_command"],
                         "aws eks update-kubeconfig --region af-south-1 --name eks-foundation-dev")
        self.assertFalse(self.engine.plan(document).has_changes)

    def test_example_node_group_resize_is_in_place(self):
        path = os.path.join(EXAMPLES, "eks-stack.yaml")
        var_file = os.path.join(EXAMPLES, "dev.vars.yaml")
        self.engine.apply(load_document(path, var_files=[var_file]))

        plan = self.engine.plan(load_document(path, var_files=[var_file], overrides={"general_max_size": 6}))

        self.assertEqual(plan.changes["aws_eks_node_group.general"].action, Action.UPDATE)
        self.assertEqual(plan.summary(), "Plan: 0 to add, 1 to change, 0 to destroy.")


if __name__ == '__main__':
    unittest.main()
