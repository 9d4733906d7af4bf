"""
Workflow errors and failure analysis.

Only node execution errors abort a run. Everything else (skips, expression
failures, loop configuration problems, incomplete merges) is absorbed where it
happens and surfaced as data. The exceptions below cover the cases that stop a
run before or during dispatch.
"""

from dataclasses import dataclass, field


class WorkflowError(Exception):
    """Base class for all workflow execution errors."""


class WorkflowValidationError(WorkflowError):
    """Raised when a workflow document fails structural checks."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Invalid workflow: {'; '.join(errors)}")


class ExecutionOrderError(WorkflowError):
    """Raised when no dependency-respecting order exists (the graph has a cycle)."""


class NodeExecutionError(WorkflowError):
    """Raised inside the engine when a dispatched node reports an error."""

    def __init__(self, node_id: str, node_name: str, message: str | None):
        self.node_id = node_id
        self.node_name = node_name
        self.message = message or "未知错误"
        super().__init__(f'节点 "{node_name}" 执行失败: {self.message}')


@dataclass
class ErrorAnalysis:
    """Friendly description of a node failure."""

    message: str
    friendly_message: str
    suggestions: list[str] = field(default_factory=list)
    code: str | None = None
    is_retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "friendlyMessage": self.friendly_message,
            "suggestions": list(self.suggestions),
            "code": self.code,
            "isRetryable": self.is_retryable,
        }


_LLM_KEYWORDS = (
    "openai",
    "anthropic",
    "api key",
    "rate limit",
    "quota",
    "context length",
    "max tokens",
    "insufficient_quota",
)
_CODE_KEYWORDS = ("syntax error", "referenceerror", "typeerror", "runtime error", "is not defined")
_NETWORK_KEYWORDS = ("fetch", "network", "econnrefused", "etimedout", "dns", "unreachable")
_DATABASE_KEYWORDS = ("database", "connection", "query", "unique constraint")


def analyze_error(error: BaseException | str | None, node_type: str | None = None) -> ErrorAnalysis:
    """
    Classify a node failure.

    Checks are ordered: LLM provider errors first, then code errors (any
    failure of a CODE node counts), then network, then database errors.
    Anything else gets a generic analysis.
    """
    message = str(error) if error is not None else ""
    lower = message.lower()

    if any(k in lower for k in _LLM_KEYWORDS):
        return _analyze_llm_error(message)
    if node_type == "CODE" or any(k in lower for k in _CODE_KEYWORDS):
        return _analyze_code_error(message)
    if any(k in lower for k in _NETWORK_KEYWORDS):
        return ErrorAnalysis(
            message=message,
            friendly_message="Network request failed",
            suggestions=[
                "Check that the target service is running",
                "Check network connectivity",
                "Check firewall configuration",
            ],
            code="NETWORK_ERROR",
            is_retryable=True,
        )
    if any(k in lower for k in _DATABASE_KEYWORDS):
        return _analyze_database_error(message)

    return ErrorAnalysis(
        message=message,
        friendly_message="An unknown error occurred during execution",
        suggestions=["Check the node configuration", "Inspect the execution logs for details"],
    )


def _analyze_llm_error(message: str) -> ErrorAnalysis:
    lower = message.lower()
    analysis = ErrorAnalysis(
        message=message,
        friendly_message="AI service call failed",
        is_retryable=True,
    )

    if "api key" in lower or "auth" in lower or "credentials" in lower:
        analysis.friendly_message = "AI service authentication failed"
        analysis.suggestions = [
            "Check that the API key is configured correctly",
            "Confirm the key has not expired or been revoked",
        ]
        analysis.is_retryable = False
        analysis.code = "AUTH_ERROR"
    elif "rate limit" in lower or "too many requests" in lower or "429" in lower:
        analysis.friendly_message = "AI service rate limit hit"
        analysis.suggestions = [
            "Retry later",
            "Reduce concurrency",
            "Check the provider's rate limits",
        ]
        analysis.code = "RATE_LIMIT"
    elif "quota" in lower or "insufficient" in lower:
        analysis.friendly_message = "AI service quota exhausted"
        analysis.suggestions = ["Check the account balance", "Upgrade the service plan"]
        analysis.is_retryable = False
        analysis.code = "QUOTA_EXCEEDED"
    elif "context length" in lower or "max tokens" in lower:
        analysis.friendly_message = "Input exceeds the model's context limit"
        analysis.suggestions = [
            "Shorten the input text",
            "Switch to a model with a larger context window",
        ]
        analysis.is_retryable = False
        analysis.code = "CONTEXT_LIMIT"
    elif "timeout" in lower:
        analysis.friendly_message = "AI service timed out"
        analysis.suggestions = ["Check network connectivity", "Increase the timeout"]
        analysis.code = "TIMEOUT"

    return analysis


def _analyze_code_error(message: str) -> ErrorAnalysis:
    analysis = ErrorAnalysis(
        message=message,
        friendly_message="Code execution failed",
        suggestions=[
            "Check the code syntax",
            "Make sure variable names are correct",
            "Inspect the console output for details",
        ],
        code="CODE_EXECUTION_ERROR",
    )

    if "ReferenceError" in message or "is not defined" in message:
        analysis.friendly_message = "Code references an undefined variable"
        analysis.suggestions.insert(0, "Check for misspelled variable names")
    elif "SyntaxError" in message:
        analysis.friendly_message = "Code syntax error"
    elif "TypeError" in message:
        analysis.friendly_message = "Type error"
        analysis.suggestions.insert(0, "Check that values have the expected types")
    elif "timeout" in message or "timed out" in message:
        analysis.friendly_message = "Code execution timed out"
        analysis.suggestions = [
            "Avoid unbounded loops",
            "Reduce the amount of data processed",
            "Increase the timeout",
        ]
        analysis.is_retryable = True
        analysis.code = "CODE_TIMEOUT"

    return analysis


def _analyze_database_error(message: str) -> ErrorAnalysis:
    analysis = ErrorAnalysis(
        message=message,
        friendly_message="Database operation failed",
        suggestions=["Contact an administrator"],
        code="DB_ERROR",
        is_retryable=True,
    )

    if "Unique constraint" in message:
        analysis.friendly_message = "Duplicate data conflict"
        analysis.suggestions = [
            "Check for duplicate submissions",
            "Make sure unique identifiers are not reused",
        ]
        analysis.is_retryable = False
        analysis.code = "DB_UNIQUE_VIOLATION"
    elif "Foreign key" in message:
        analysis.friendly_message = "Related record not found"
        analysis.suggestions = ["The referenced data does not exist"]
        analysis.is_retryable = False

    return analysis
