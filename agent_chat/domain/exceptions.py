"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
ChatEngine 在调度边界统一捕获，并转换为面向用户的错误文本。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、body 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class MissingConfigError(ValidationError):
    """智能体配置缺失（或缺少 api_key），在任何网络请求和历史修改之前抛出。"""


class TransportError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class HttpError(BusinessError):
    """Provider 返回非 2xx 状态码。"""


class EmptyResponseError(BusinessError):
    """响应可以解析，但没有任何回答内容。"""


class ParseError(BusinessError):
    """响应体格式错误，完全无法解析。"""


def describe_error(exc: BaseException) -> str:
    """把异常转成回调给 UI 的可读错误文本。"""

    if isinstance(exc, HttpError):
        return f"HTTP {exc.http_status}: {exc.extra.get('body') or '无错误详情'}"
    if isinstance(exc, TransportError):
        return f"网络错误: {exc.message}"
    if isinstance(exc, BusinessError):
        return exc.message
    return f"请求错误: {exc}"
