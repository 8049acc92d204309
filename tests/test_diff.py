"""
Unit tests for planning
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from reconciler.diff import Action, changed_paths, plan_changes
from reconciler.errors import ConfigError, PlanError
from reconciler.providers import ProviderRegistry, simulated_aws
from reconciler.resources import UNKNOWN, Lifecycle, Ref, ResourceSpec, ResourceState
from reconciler.state import State


def spec(address, lifecycle=None, depends_on=None, **properties):
    resource_type, name = address.split(".")
    return ResourceSpec(type=resource_type, name=name, properties=properties,
                        depends_on=depends_on or [], lifecycle=lifecycle or Lifecycle())


def recorded(address, resource_id, inputs, outputs=None, dependencies=None):
    resource_type, name = address.split(".")
    return ResourceState(type=resource_type, name=name, id=resource_id, inputs=inputs,
                         outputs=outputs or {**inputs, "id": resource_id}, dependencies=dependencies or [])


class TestChangedPaths(unittest.TestCase):

    def test_nested_paths(self):
        before = {"scaling_config": {"min_size": 1, "max_size": 3}, "labels": {}}
        after = {"scaling_config": {"min_size": 1, "max_size": 5}, "labels": {}}
        self.assertEqual(changed_paths(before, after), ["scaling_config.max_size"])

    def test_lists_compared_whole(self):
        self.assertEqual(changed_paths({"ids": ["a", "b"]}, {"ids": ["b", "a"]}), ["ids"])

    def test_added_and_removed_keys(self):
        self.assertEqual(changed_paths({"a": 1}, {"b": 2}), ["a", "b"])

    def test_unknown_always_changed(self):
        self.assertEqual(changed_paths({"vpc_id": "vpc-1"}, {"vpc_id": UNKNOWN}), ["vpc_id"])

    def test_equal(self):
        self.assertEqual(changed_paths({"a": {"b": [1]}}, {"a": {"b": [1]}}), [])


class TestPlanChanges(unittest.TestCase):

    def setUp(self):
        self.registry = ProviderRegistry([simulated_aws()])

    def plan(self, declared, state=None, destroy=False):
        return plan_changes({item.address: item for item in declared}, state or State(), self.registry,
                            destroy=destroy)

    def test_create_everything(self):
        plan = self.plan([
            spec("aws_vpc.main", cidr_block="10.0.0.0/16"),
            spec("aws_subnet.a", vpc_id=Ref("aws_vpc.main", "id"), cidr_block="10.0.0.0/24"),
        ])

        self.assertEqual([change.action for change in plan.ordered()], [Action.CREATE, Action.CREATE])
        self.assertIs(plan.changes["aws_subnet.a"].after["vpc_id"], UNKNOWN)
        self.assertEqual(plan.summary(), "Plan: 2 to add, 0 to change, 0 to destroy.")

    def test_noop(self):
        state = State(resources={"aws_vpc.main": recorded("aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16"})})

        plan = self.plan([spec("aws_vpc.main", cidr_block="10.0.0.0/16")], state)

        self.assertFalse(plan.has_changes)
        self.assertEqual(plan.summary(), "No changes. Infrastructure matches the declared state.")

    def test_update_in_place(self):
        state = State(resources={"aws_vpc.main": recorded(
            "aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16", "tags": {"Env": "dev"}})})

        plan = self.plan([spec("aws_vpc.main", cidr_block="10.0.0.0/16", tags={"Env": "prod"})], state)

        change = plan.changes["aws_vpc.main"]
        self.assertEqual(change.action, Action.UPDATE)
        self.assertEqual(change.changed, ["tags.Env"])
        self.assertEqual(change.replace_paths, [])

    def test_force_new_replaces(self):
        state = State(resources={"aws_vpc.main": recorded("aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16"})})

        plan = self.plan([spec("aws_vpc.main", cidr_block="10.1.0.0/16")], state)

        change = plan.changes["aws_vpc.main"]
        self.assertEqual(change.action, Action.REPLACE)
        self.assertEqual(change.replace_paths, ["cidr_block"])
        self.assertEqual(plan.summary(), "Plan: 1 to add, 0 to change, 1 to destroy.")

    def test_replacement_cascades_through_unknown_ids(self):
        state = State(resources={
            "aws_vpc.main": recorded("aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16"}),
            "aws_subnet.a": recorded("aws_subnet.a", "subnet-1", {"vpc_id": "vpc-1", "cidr_block": "10.0.0.0/24"},
                                     dependencies=["aws_vpc.main"]),
        })

        plan = self.plan([
            spec("aws_vpc.main", cidr_block="10.1.0.0/16"),
            spec("aws_subnet.a", vpc_id=Ref("aws_vpc.main", "id"), cidr_block="10.0.0.0/24"),
        ], state)

        self.assertEqual(plan.changes["aws_subnet.a"].action, Action.REPLACE)
        self.assertEqual(plan.changes["aws_subnet.a"].replace_paths, ["vpc_id"])

    def test_update_keeps_known_ids_for_dependents(self):
        state = State(resources={
            "aws_vpc.main": recorded("aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16", "tags": {}}),
            "aws_subnet.a": recorded("aws_subnet.a", "subnet-1", {"vpc_id": "vpc-1", "cidr_block": "10.0.0.0/24"}),
        })

        plan = self.plan([
            spec("aws_vpc.main", cidr_block="10.0.0.0/16", tags={"Env": "dev"}),
            spec("aws_subnet.a", vpc_id=Ref("aws_vpc.main", "id"), cidr_block="10.0.0.0/24"),
        ], state)

        self.assertEqual(plan.changes["aws_vpc.main"].action, Action.UPDATE)
        self.assertEqual(plan.changes["aws_subnet.a"].action, Action.NOOP)

    def test_orphans_deleted(self):
        state = State(resources={"aws_eip.old": recorded("aws_eip.old", "eipalloc-1", {"domain": "vpc"})})

        plan = self.plan([], state)

        self.assertEqual(plan.changes["aws_eip.old"].action, Action.DELETE)
        self.assertEqual(plan.summary(), "Plan: 0 to add, 0 to change, 1 to destroy.")

    def test_ignore_changes(self):
        inputs = {"cluster_name": "demo", "node_group_name": "demo-general", "node_role_arn": "arn:role",
                  "subnet_ids": ["subnet-1", "subnet-2"],
                  "scaling_config": {"min_size": 1, "desired_size": 2, "max_size": 3}}
        state = State(resources={"aws_eks_node_group.general": recorded("aws_eks_node_group.general", "ng-1", inputs)})
        declared = dict(inputs, scaling_config={"min_size": 1, "desired_size": 3, "max_size": 3})

        plan = self.plan([spec("aws_eks_node_group.general",
                               lifecycle=Lifecycle(ignore_changes=["scaling_config.desired_size"]),
                               **declared)], state)

        self.assertEqual(plan.changes["aws_eks_node_group.general"].action, Action.NOOP)

    def test_prevent_destroy_blocks_replace(self):
        state = State(resources={"aws_vpc.main": recorded("aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16"})})

        with self.assertRaisesRegex(PlanError, "prevent_destroy"):
            self.plan([spec("aws_vpc.main", lifecycle=Lifecycle(prevent_destroy=True), cidr_block="10.1.0.0/16")],
                      state)

    def test_prevent_destroy_blocks_destroy(self):
        state = State(resources={"aws_vpc.main": recorded("aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16"})})

        with self.assertRaises(PlanError):
            self.plan([spec("aws_vpc.main", lifecycle=Lifecycle(prevent_destroy=True), cidr_block="10.0.0.0/16")],
                      state, destroy=True)

    def test_destroy_plan(self):
        state = State(resources={
            "aws_vpc.main": recorded("aws_vpc.main", "vpc-1", {"cidr_block": "10.0.0.0/16"}),
            "aws_eip.nat": recorded("aws_eip.nat", "eipalloc-1", {"domain": "vpc"}),
        })

        plan = self.plan([spec("aws_vpc.main", cidr_block="10.0.0.0/16")], state, destroy=True)

        self.assertTrue(plan.destroy)
        self.assertEqual({change.action for change in plan.changes.values()}, {Action.DELETE})
        self.assertEqual(len(plan.changes), 2)

    def test_schema_validation(self):
        with self.assertRaisesRegex(ConfigError, "missing required"):
            self.plan([spec("aws_subnet.a", cidr_block="10.0.0.0/24")])
        with self.assertRaisesRegex(ConfigError, "unsupported"):
            self.plan([spec("aws_vpc.main", cidr_block="10.0.0.0/16", colour="blue")])

    def test_scaling_config_validated(self):
        with self.assertRaisesRegex(ConfigError, "min_size <= desired_size"):
            self.plan([spec("aws_eks_node_group.general", cluster_name="demo", node_group_name="demo-general",
                            node_role_arn="arn:role", subnet_ids=["subnet-1", "subnet-2"],
                            scaling_config={"min_size": 2, "desired_size": 1, "max_size": 3})])

    def test_cluster_needs_two_subnets(self):
        with self.assertRaisesRegex(ConfigError, "two availability zones"):
            self.plan([spec("aws_eks_cluster.main", name="demo", role_arn="arn:role",
                            vpc_config={"subnet_ids": ["subnet-1"]})])

    def test_unknown_attribute_reference(self):
        with self.assertRaisesRegex(ConfigError, "unknown attribute idd of aws_vpc.main"):
            self.plan([
                spec("aws_vpc.main", cidr_block="10.0.0.0/16"),
                spec("aws_subnet.a", vpc_id=Ref("aws_vpc.main", "idd"), cidr_block="10.0.0.0/24"),
            ])

    def test_computed_attribute_reference(self):
        plan = self.plan([
            spec("aws_eks_cluster.main", name="demo", role_arn="arn:role",
                 vpc_config={"subnet_ids": ["subnet-1", "subnet-2"]}),
            spec("aws_vpc.main", cidr_block="10.0.0.0/16",
                 tags={"ca": Ref("aws_eks_cluster.main", "certificate_authority.data")}),
        ])
        self.assertEqual(plan.changes["aws_vpc.main"].action, Action.CREATE)

    def test_deposed_objects_are_planned_for_deletion(self):
        vpc = recorded("aws_vpc.main", "vpc-2", {"cidr_block": "10.1.0.0/16"})
        vpc.deposed = ["vpc-1"]

        plan = self.plan([spec("aws_vpc.main", cidr_block="10.1.0.0/16")], State(resources={"aws_vpc.main": vpc}))

        self.assertEqual(plan.changes["aws_vpc.main"].action, Action.NOOP)
        self.assertEqual(plan.changes["aws_vpc.main"].deposed, ["vpc-1"])
        self.assertTrue(plan.has_changes)
        self.assertEqual(plan.summary(), "Plan: 0 to add, 0 to change, 1 to destroy.")

    def test_unknown_type(self):
        with self.assertRaisesRegex(ConfigError, "does not support"):
            self.plan([spec("aws_lambda_function.f")])


if __name__ == '__main__':
    unittest.main()
