"""业务异常."""


class NotFoundError(Exception):
    """请求的资源不存在."""


class ValidationError(Exception):
    """请求参数不合法."""


class ConflictError(Exception):
    """与当前状态冲突（例如重复发布）."""


class PermanentJobError(Exception):
    """不可重试的任务错误，worker 遇到后直接判定失败."""


class InvalidPayloadError(PermanentJobError):
    """任务参数格式错误."""


class SourceNotFoundError(PermanentJobError):
    """源文章已过期或被删除."""


class ManuscriptNotFoundError(PermanentJobError):
    """原稿已不存在."""
