"""
内置工作流模板

RAG、多智能体、数据处理和通用场景的可运行工作流。每次构建都返回新的 Workflow 对象。
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .models.workflow import Workflow, Node, Edge


DEFAULT_TEMPLATE_MODEL = "gpt-4o-mini"

NodeSpec = Tuple[str, str, Dict[str, Any]]
EdgeSpec = Tuple[str, str, Optional[str]]


@dataclass
class WorkflowTemplate:
    """工作流模板"""
    id: str
    name: str
    description: str
    category: str
    nodes: List[NodeSpec]
    edges: List[EdgeSpec]
    tags: List[str] = field(default_factory=list)

    def to_workflow(self) -> Workflow:
        return Workflow(
            id=self.id,
            name=self.name,
            description=self.description,
            nodes=[Node(id=node_id, type=node_type, data=dict(data)) for node_id, node_type, data in self.nodes],
            edges=[
                Edge(id=f"{source}-{target}", source=source, target=target, handle=handle)
                for source, target, handle in self.edges
            ],
            metadata={"template": self.id, "category": self.category, "tags": list(self.tags)},
        )


def _agent(label: str, system_prompt: str, temperature: float = 0.7, max_tokens: int = 2048,
           tools: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "label": label,
        "model": DEFAULT_TEMPLATE_MODEL,
        "systemPrompt": system_prompt,
        "temperature": temperature,
        "maxTokens": max_tokens,
        "tools": tools or [],
    }


def _human(label: str, prompt: str, variable_name: str, options: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "label": label,
        "prompt": prompt,
        "inputType": "choice" if options else "text",
        "options": options or [],
        "variableName": variable_name,
    }


START = ("start", "start", {"label": "Start"})
END = ("end", "end", {"label": "End"})


TEMPLATES: List[WorkflowTemplate] = [
    WorkflowTemplate(
        id="simple-qa",
        name="Simple Q&A Bot",
        description="Basic question-answering workflow with a single AI agent",
        category="general",
        tags=["qa", "chatbot", "simple"],
        nodes=[
            START,
            ("answer", "ai_agent", _agent(
                "Q&A Agent",
                "You are a helpful assistant that provides clear and concise answers.",
                max_tokens=1024,
            )),
            END,
        ],
        edges=[("start", "answer", None), ("answer", "end", None)],
    ),
    WorkflowTemplate(
        id="rag-basic",
        name="Basic RAG Pipeline",
        description="Retrieve relevant documents from a knowledge base and answer based on that context",
        category="rag",
        tags=["rag", "knowledge"],
        nodes=[
            START,
            ("query", "human", _human("User Query", "Enter your question", "user_query")),
            ("retrieve", "knowledge", {
                "label": "Retrieve Documents",
                "knowledgeBaseId": "default",
                "topK": 5,
                "threshold": 0.7,
            }),
            ("answer", "ai_agent", _agent(
                "Generate Response",
                "You are a helpful assistant. Answer the user's question based on the provided "
                "context documents. If the context doesn't contain relevant information, say so.",
            )),
            END,
        ],
        edges=[
            ("start", "query", None),
            ("query", "retrieve", None),
            ("retrieve", "answer", None),
            ("answer", "end", None),
        ],
    ),
    WorkflowTemplate(
        id="rag-advanced",
        name="Advanced RAG with Re-ranking",
        description="Retrieve a wide candidate set, keep the best matches, then answer with citations",
        category="rag",
        tags=["rag", "knowledge", "re-ranking"],
        nodes=[
            START,
            ("query", "human", _human("User Query", "Enter your question", "user_query")),
            ("retrieve", "knowledge", {
                "label": "Initial Retrieval",
                "knowledgeBaseId": "default",
                "topK": 10,
                "threshold": 0.6,
            }),
            ("rerank", "transform", {
                "label": "Re-rank Results",
                "outputMapping": {
                    "question": "input['query']",
                    "context": "[r['document_name'] + ': ' + r['content'] for r in input['results'][:5]]",
                },
            }),
            ("answer", "ai_agent", _agent(
                "Generate Answer",
                "You are an expert assistant. Use the provided context to answer questions "
                "accurately. Cite sources when possible.",
                temperature=0.5,
                max_tokens=3000,
            )),
            END,
        ],
        edges=[
            ("start", "query", None),
            ("query", "retrieve", None),
            ("retrieve", "rerank", None),
            ("rerank", "answer", None),
            ("answer", "end", None),
        ],
    ),
    WorkflowTemplate(
        id="multi-agent-research",
        name="Multi-Agent Research Team",
        description="A researcher gathers facts, an analyst processes them and a writer produces the report",
        category="multi-agent",
        tags=["research", "report"],
        nodes=[
            START,
            ("topic", "human", _human("Research Topic", "Enter the research topic", "topic")),
            ("researcher", "ai_agent", _agent(
                "Researcher Agent",
                "You are a research assistant. Gather comprehensive information about the given "
                "topic. Provide key facts, statistics, and important details.",
                max_tokens=3000,
                tools=["web_search"],
            )),
            ("analyst", "ai_agent", _agent(
                "Analyst Agent",
                "You are a data analyst. Analyze the research data, identify patterns, trends, "
                "and key insights. Provide structured analysis.",
                temperature=0.5,
                max_tokens=2500,
            )),
            ("writer", "ai_agent", _agent(
                "Writer Agent",
                "You are a professional writer. Create a well-structured report based on the "
                "research and analysis provided.",
                temperature=0.8,
                max_tokens=4000,
            )),
            END,
        ],
        edges=[
            ("start", "topic", None),
            ("topic", "researcher", None),
            ("researcher", "analyst", None),
            ("analyst", "writer", None),
            ("writer", "end", None),
        ],
    ),
    WorkflowTemplate(
        id="multi-agent-debate",
        name="AI Debate System",
        description="Two agents argue a topic in parallel and a judge agent synthesizes their arguments",
        category="multi-agent",
        tags=["debate", "parallel"],
        nodes=[
            START,
            ("topic", "human", _human("Debate Topic", "Enter the debate topic", "debate_topic")),
            ("advocate", "ai_agent", _agent(
                "Advocate Agent",
                "You are a debate advocate. Present strong arguments IN FAVOR of the given topic.",
                temperature=0.8,
            )),
            ("opposition", "ai_agent", _agent(
                "Opposition Agent",
                "You are a debate opponent. Present strong arguments AGAINST the given topic.",
                temperature=0.8,
            )),
            ("combine", "merge", {"label": "Combine Arguments"}),
            ("judge", "ai_agent", _agent(
                "Judge Agent",
                "You are an impartial judge. Evaluate both sides of the debate and provide a "
                "balanced synthesis with your reasoned conclusion.",
                temperature=0.5,
                max_tokens=3000,
            )),
            END,
        ],
        edges=[
            ("start", "topic", None),
            ("topic", "advocate", None),
            ("topic", "opposition", None),
            ("advocate", "combine", None),
            ("opposition", "combine", None),
            ("combine", "judge", None),
            ("judge", "end", None),
        ],
    ),
    WorkflowTemplate(
        id="content-generation",
        name="AI Content Generation Pipeline",
        description="Brainstorm topics, let a human pick one, then outline, write and review the content",
        category="general",
        tags=["content", "writing", "human-review"],
        nodes=[
            START,
            ("brief", "human", _human("Content Brief", "Describe the content you need", "content_brief")),
            ("brainstorm", "ai_agent", _agent(
                "Topic Brainstorm",
                "You are a creative brainstorming assistant. Generate 5 engaging topic ideas "
                "based on the content brief.",
                temperature=0.9,
            )),
            ("select", "human", _human("Select Topic", "Which topic should be written?", "selected_topic")),
            ("outline", "ai_agent", _agent(
                "Create Outline",
                "You are a content strategist. Create a detailed outline with sections and key "
                "points for the chosen topic.",
            )),
            ("write", "ai_agent", _agent(
                "Write Content",
                "You are a professional content writer. Write engaging, well-structured content "
                "based on the outline provided.",
                max_tokens=4000,
            )),
            ("review", "ai_agent", _agent(
                "Quality Review",
                "You are an editor. Review the content for grammar, clarity and engagement, and "
                "suggest improvements.",
                temperature=0.3,
            )),
            END,
        ],
        edges=[
            ("start", "brief", None),
            ("brief", "brainstorm", None),
            ("brainstorm", "select", None),
            ("select", "outline", None),
            ("outline", "write", None),
            ("write", "review", None),
            ("review", "end", None),
        ],
    ),
    WorkflowTemplate(
        id="human-in-loop-review",
        name="Human-in-the-Loop Review",
        description="An agent drafts a response, a human approves it or asks for a revision",
        category="general",
        tags=["human-review", "approval"],
        nodes=[
            START,
            ("draft", "ai_agent", _agent("Generate Draft", "Generate a draft response based on the input.")),
            ("review", "human", _human(
                "Human Review",
                "Please review the draft and approve or request a revision",
                "decision",
                options=["Approve", "Revise"],
            )),
            ("decision", "condition", {
                "label": "Check Decision",
                "expression": "decision",
                "operator": "equals",
                "value": "Approve",
            }),
            ("revise", "ai_agent", _agent(
                "Revise Draft",
                "Revise the draft based on the feedback provided.",
                temperature=0.5,
            )),
            END,
        ],
        edges=[
            ("start", "draft", None),
            ("draft", "review", None),
            ("review", "decision", None),
            ("decision", "end", "true"),
            ("decision", "revise", "false"),
            ("revise", "end", None),
        ],
    ),
    WorkflowTemplate(
        id="data-etl-pipeline",
        name="ETL Data Pipeline",
        description="Validate incoming rows, transform each one, and route empty input to an error handler",
        category="data-processing",
        tags=["etl", "transformation", "validation"],
        nodes=[
            START,
            ("extract", "transform", {
                "label": "Extract & Validate",
                "outputMapping": {"data": "input['rows']", "valid": "len(input['rows']) > 0"},
            }),
            ("check", "condition", {
                "label": "Check Valid",
                "expression": "valid",
                "operator": "equals",
                "value": True,
            }),
            ("process", "loop", {"label": "Process Items", "iterableField": "data", "maxIterations": 100}),
            ("clean", "transform", {
                "label": "Clean Row",
                "code": "{'name': input['first_name'] + ' ' + input['last_name'], "
                        "'email': input['email'], 'has_email': '@' in input['email']}",
            }),
            ("handle_error", "ai_agent", _agent(
                "Handle Error",
                "Analyze the validation error and suggest corrections.",
                temperature=0.3,
                max_tokens=512,
            )),
            ("combine", "merge", {"label": "Merge Results"}),
            END,
        ],
        edges=[
            ("start", "extract", None),
            ("extract", "check", None),
            ("check", "process", "true"),
            ("check", "handle_error", "false"),
            ("process", "clean", "body"),
            ("process", "combine", "exit"),
            ("handle_error", "combine", None),
            ("combine", "end", None),
        ],
    ),
    WorkflowTemplate(
        id="data-batch-processing",
        name="Batch Data Processing",
        description="Process items one by one, branch on each item's status and aggregate the results",
        category="data-processing",
        tags=["batch", "loop", "aggregation"],
        nodes=[
            START,
            ("process", "loop", {"label": "Process Each Item", "iterableField": "items", "maxIterations": 100}),
            ("validate", "condition", {
                "label": "Validate Item",
                "expression": "status",
                "operator": "equals",
                "value": "valid",
            }),
            ("accept", "transform", {
                "label": "Process Valid",
                "code": "{'id': input['id'], 'processed': True}",
            }),
            ("reject", "transform", {
                "label": "Handle Invalid",
                "code": "{'id': input['id'], 'error': 'Invalid status'}",
            }),
            ("combine", "merge", {"label": "Merge Results"}),
            ("aggregate", "transform", {
                "label": "Aggregate Results",
                "outputMapping": {
                    "total": "len(input)",
                    "processed": "len([r for r in input if 'processed' in r])",
                    "errors": "len([r for r in input if 'error' in r])",
                },
            }),
            END,
        ],
        edges=[
            ("start", "process", None),
            ("process", "validate", "body"),
            ("validate", "accept", "true"),
            ("validate", "reject", "false"),
            ("accept", "combine", None),
            ("reject", "combine", None),
            ("process", "aggregate", "exit"),
            ("aggregate", "end", None),
        ],
    ),
]


def list_templates(category: Optional[str] = None) -> List[WorkflowTemplate]:
    """列出模板，可按分类过滤"""
    return [template for template in TEMPLATES if category is None or template.category == category]


def get_template(template_id: str) -> Optional[WorkflowTemplate]:
    for template in TEMPLATES:
        if template.id == template_id:
            return template
    return None


def create_workflow(template_id: str) -> Workflow:
    """
    根据模板构建工作流

    Raises:
        ValueError: 模板不存在
    """
    template = get_template(template_id)
    if template is None:
        raise ValueError(f"Unknown workflow template: {template_id}")
    return template.to_workflow()
