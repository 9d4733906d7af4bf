"""Tests for skip propagation over routing decisions, branch ports and failures."""

from conftest import process_node

from flowgraph.graph.context import NodeOutput, NodeStatus
from flowgraph.graph.decisions import ConditionDecision, SplitDecision, SwitchDecision
from flowgraph.graph.routing import SkipPropagation, SkipReason


def routed(node_id: str, target: str | None) -> NodeOutput:
    decision = ConditionDecision(matched=target is not None, matched_target_node_id=target)
    return NodeOutput(
        node_id=node_id,
        node_name=node_id,
        node_type="LOGIC",
        data=decision.to_data(),
        logic=decision,
    )


def condition_result(node_id: str, result: bool) -> NodeOutput:
    return NodeOutput(
        node_id=node_id, node_name=node_id, node_type="CONDITION", data={"result": result}
    )


def failed(node_id: str) -> NodeOutput:
    return NodeOutput(
        node_id=node_id,
        node_name=node_id,
        node_type="PROCESS",
        status=NodeStatus.ERROR,
        error="boom",
    )


def logic(node_id: str, mode: str = "condition") -> dict:
    return {"id": node_id, "type": "LOGIC", "name": node_id, "config": {"mode": mode}}


class TestOutputDrivenRouting:
    def test_join_safety(self, build_workflow):
        # L routes to B; C is not taken. C -> D, B -> D, C -> E -> F.
        workflow = build_workflow(
            [logic("L")] + [process_node(n) for n in "BCDEF"],
            [("L", "B"), ("L", "C"), ("C", "D"), ("B", "D"), ("C", "E"), ("E", "F")],
        )
        skipped = SkipPropagation(workflow).compute({"L": routed("L", "B")})

        assert set(skipped) == {"C", "E", "F"}
        assert all(reason == SkipReason.BRANCH_NOT_TAKEN for reason in skipped.values())
        assert "D" not in skipped
        assert "B" not in skipped

    def test_unmatched_decision_without_fallback_prunes_nothing(self, build_workflow):
        workflow = build_workflow(
            [logic("L"), process_node("B"), process_node("C")], [("L", "B"), ("L", "C")]
        )

        skipped = SkipPropagation(workflow).compute({"L": routed("L", None)})

        assert skipped == {}

    def test_matched_target_is_never_skipped(self, build_workflow):
        # B is the match but is only wired through the untaken C
        workflow = build_workflow(
            [logic("L"), process_node("B"), process_node("C")], [("L", "C"), ("C", "B")]
        )

        skipped = SkipPropagation(workflow).compute({"L": routed("L", "B")})

        assert set(skipped) == {"C"}

    def test_switch_decisions_route_like_conditions(self, build_workflow):
        workflow = build_workflow(
            [logic("S", "switch"), process_node("G"), process_node("F")], [("S", "G"), ("S", "F")]
        )
        decision = SwitchDecision(matched=True, matched_branch_id="b1", matched_target_node_id="G")
        output = NodeOutput(
            node_id="S", node_name="S", node_type="LOGIC", data=decision.to_data(), logic=decision
        )

        assert SkipPropagation(workflow).compute({"S": output}) == {
            "F": SkipReason.BRANCH_NOT_TAKEN
        }

    def test_split_never_prunes(self, build_workflow):
        workflow = build_workflow(
            [logic("S", "split"), process_node("A"), process_node("B")], [("S", "A"), ("S", "B")]
        )
        decision = SplitDecision()
        output = NodeOutput(
            node_id="S", node_name="S", node_type="LOGIC", data=decision.to_data(), logic=decision
        )

        assert SkipPropagation(workflow).compute({"S": output}) == {}

    def test_deterministic(self, build_workflow):
        workflow = build_workflow(
            [logic("L")] + [process_node(n) for n in "BCDEF"],
            [("L", "B"), ("L", "C"), ("C", "D"), ("B", "D"), ("C", "E"), ("E", "F")],
        )
        outputs = {"L": routed("L", "B")}

        first = SkipPropagation(workflow).compute(outputs)
        second = SkipPropagation(workflow).compute(outputs)

        assert list(first.items()) == list(second.items())
        assert list(first) == ["C", "E", "F"]


class TestBranchPorts:
    def test_losing_port_is_skipped(self, build_workflow):
        workflow = build_workflow(
            [
                {"id": "K", "type": "CONDITION", "name": "K"},
                process_node("yes"),
                process_node("no"),
                process_node("after_no"),
            ],
            [("K", "yes", "true"), ("K", "no", "false"), ("no", "after_no")],
        )

        skipped = SkipPropagation(workflow).compute({"K": condition_result("K", True)})

        assert set(skipped) == {"no", "after_no"}

    def test_live_inbound_edge_spares_the_node(self, build_workflow):
        workflow = build_workflow(
            [
                {"id": "K", "type": "CONDITION", "name": "K"},
                process_node("other"),
                process_node("no"),
            ],
            [("K", "no", "false"), ("other", "no")],
        )

        skipped = SkipPropagation(workflow).compute({"K": condition_result("K", True)})

        assert skipped == {}

    def test_unlabelled_edges_are_always_taken(self, build_workflow):
        workflow = build_workflow(
            [{"id": "K", "type": "CONDITION", "name": "K"}, process_node("next")],
            [("K", "next")],
        )

        assert SkipPropagation(workflow).compute({"K": condition_result("K", False)}) == {}


class TestFailurePropagation:
    def test_dependents_of_a_failure_are_skipped(self, build_workflow):
        workflow = build_workflow(
            [process_node(n) for n in "ABCD"], [("A", "B"), ("B", "C"), ("D", "C")]
        )

        skipped = SkipPropagation(workflow).compute({"A": failed("A")})

        assert skipped == {"B": SkipReason.UPSTREAM_FAILED}

    def test_merge_nodes_are_exempt(self, build_workflow):
        workflow = build_workflow(
            [process_node("A"), process_node("B"), logic("M", "merge"), process_node("after")],
            [("A", "B"), ("B", "M"), ("M", "after")],
        )

        skipped = SkipPropagation(workflow).compute({"A": failed("A")})

        assert skipped == {"B": SkipReason.UPSTREAM_FAILED}

    def test_custom_merge_predicate(self, build_workflow):
        workflow = build_workflow([process_node("A"), process_node("B")], [("A", "B")])

        skipped = SkipPropagation(workflow, is_merge_capable=lambda node: node.id == "B").compute(
            {"A": failed("A")}
        )

        assert skipped == {}

    def test_merge_node_still_skipped_when_every_branch_is_untaken(self, build_workflow):
        workflow = build_workflow(
            [logic("L"), process_node("B"), logic("M", "merge")],
            [("L", "B"), ("B", "M")],
        )

        skipped = SkipPropagation(workflow).compute({"L": routed("L", "elsewhere")})

        assert skipped == {
            "B": SkipReason.BRANCH_NOT_TAKEN,
            "M": SkipReason.BRANCH_NOT_TAKEN,
        }
