"""
工作流结构校验测试
"""
import pytest

from agent_studio.models.workflow import Workflow, Node, NodeType, Edge, ToolNodeData


class TestWorkflowValidation:
    """Workflow.validate() 测试"""

    def test_valid_workflow(self, agent_workflow):
        assert agent_workflow.validate() == []

    def test_missing_start(self, build_workflow):
        workflow = build_workflow(nodes=[("end", "end")], edges=[])

        assert "Workflow must have a START node" in workflow.validate()

    def test_multiple_starts(self, build_workflow):
        workflow = build_workflow(nodes=[("a", "start"), ("b", "start")], edges=[])

        assert "Workflow can only have one START node, found 2" in workflow.validate()

    def test_duplicate_node_ids(self, build_workflow):
        workflow = build_workflow(nodes=[("start", "start"), ("start", "end")], edges=[])

        assert "Duplicate node IDs found" in workflow.validate()

    def test_dangling_edges(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start")],
            edges=[("start", "ghost"), ("phantom", "start")],
        )

        errors = workflow.validate()

        assert "Edge target 'ghost' not found in nodes" in errors
        assert "Edge source 'phantom' not found in nodes" in errors

    def test_start_and_end_connections(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start"), ("end", "end"), ("t", "transform", {"code": "input"})],
            edges=[("start", "end"), ("end", "t"), ("t", "start")],
        )

        errors = workflow.validate()

        assert "START node 'start' should not have incoming connections" in errors
        assert "END node 'end' should not have outgoing connections" in errors
        assert "Workflow contains cycles" in errors

    def test_condition_requires_both_branches(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("check", "condition", {"expression": "x", "operator": "equals", "value": 1}),
                ("a", "end"),
                ("b", "end"),
            ],
            edges=[("start", "check"), ("check", "a", "true"), ("check", "b")],
        )

        errors = workflow.validate()

        assert "Condition node 'check' must have exactly one 'false' edge, found 0" in errors
        assert any("without a true/false handle" in error for error in errors)

    def test_condition_branch_from_label(self):
        workflow = Workflow(
            nodes=[
                Node("start", NodeType.START),
                Node("check", NodeType.CONDITION, {"expression": "x", "operator": "regex", "value": "^a"}),
                Node("a", NodeType.END),
                Node("b", NodeType.END),
            ],
            edges=[
                Edge(source="start", target="check"),
                Edge(source="check", target="a", label="Yes"),
                Edge(source="check", target="b", label="No"),
            ],
        )

        assert workflow.validate() == []
        assert [edge.target for edge in workflow.condition_edges("check", True)] == ["a"]

    def test_loop_allows_one_body_edge(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("loop", "loop"),
                ("a", "transform", {"code": "input"}),
                ("b", "transform", {"code": "input"}),
            ],
            edges=[("start", "loop"), ("loop", "a", "body"), ("loop", "b", "body")],
        )

        assert "Loop node 'loop' can only have one 'body' edge" in workflow.validate()

    def test_loop_body_merge_waiting_outside_body(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("side", "transform", {"code": "input"}),
                ("loop", "loop"),
                ("body", "transform", {"code": "input"}),
                ("merge", "merge"),
            ],
            edges=[
                ("start", "loop"),
                ("start", "side"),
                ("loop", "body", "body"),
                ("body", "merge"),
                ("side", "merge"),
            ],
        )

        assert workflow.validate() == [
            "Loop node 'loop' body reaches merge node 'merge' which also waits on ['side'] outside the loop body"
        ]

    def test_loop_body_merge_with_internal_inputs_is_valid(self, build_workflow):
        workflow = build_workflow(
            nodes=[
                ("start", "start"),
                ("loop", "loop"),
                ("fork", "transform", {"code": "input"}),
                ("a", "transform", {"code": "input"}),
                ("merge", "merge"),
            ],
            edges=[
                ("start", "loop"),
                ("loop", "fork", "body"),
                ("fork", "a"),
                ("fork", "merge"),
                ("a", "merge"),
            ],
        )

        assert workflow.validate() == []

    @pytest.mark.parametrize("node_type,data,message", [
        ("ai_agent", {"label": "Writer"}, "AI Agent 'Writer' must have a model selected"),
        ("ai_agent", {"label": "Writer", "model": "gpt-4o", "temperature": 3},
         "AI Agent 'Writer' temperature must be between 0 and 2"),
        ("ai_agent", {"label": "Writer", "model": "gpt-4o", "maxTokens": 0},
         "AI Agent 'Writer' max tokens must be at least 1"),
        ("tool", {"label": "Fetch"}, "Tool node 'Fetch' must have a tool selected"),
        ("condition", {"label": "Gate", "expression": ""},
         "Condition node 'Gate' must have an expression and operator"),
        ("condition", {"label": "Gate", "expression": "x", "operator": "between"},
         "Condition node 'Gate' has unknown operator 'between'"),
        ("loop", {"label": "Each", "maxIterations": 0}, "Loop node 'Each' max iterations must be at least 1"),
        ("transform", {"label": "Shape"}, "Transform node 'Shape' must have a transformation expression"),
        ("human", {"label": "Review"}, "Human Input node 'Review' must have a prompt"),
    ])
    def test_node_configuration(self, build_workflow, node_type, data, message):
        workflow = build_workflow(
            nodes=[("start", "start"), ("node", node_type, data)],
            edges=[],
        )

        assert message in workflow.validate()

    def test_unreachable_nodes(self, build_workflow):
        workflow = build_workflow(
            nodes=[("start", "start"), ("end", "end"), ("orphan", "transform", {"code": "1"})],
            edges=[("start", "end")],
        )

        assert workflow.validate() == []
        assert workflow.find_unreachable_nodes() == ["orphan"]

    def test_node_rejects_mismatched_data(self):
        with pytest.raises(ValueError):
            Node("agent", NodeType.AI_AGENT, ToolNodeData(toolId="calculator"))

    def test_label_falls_back_to_id(self):
        assert Node("plain", NodeType.MERGE).label == "plain"
