"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / block / import_rejected / row_error）
- code:        业务错误码（UNRECOGNIZED_FORMAT / PATIENT_NAME_MISSING / ...）
- message:     人类可读的描述
- detail:      可选的附加信息（dict / list / None）
- http_status: 调用方（web 层）渲染响应时使用的 HTTP 状态码

导入流程中的异常分两层：
  ImportRejected  整个文件被拒绝，不产生任何写入，也没有部分报告
  RowError        单行失败，只在 reconciliation 循环内部抛出和捕获
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """调用方输入不合法（空文件、超出大小限制），400。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class BlockError(BaseAppException):
    """业务规则阻止操作，409。查找不到资源时用 http_status=404 覆盖。"""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class ImportRejected(BaseAppException):
    """
    致命导入错误：文件无法被有意义地解析。

    在任何 ORM 写入之前抛出，调用方只会拿到这一个失败，没有部分报告。
    """

    type = 'import_rejected'
    code = 'IMPORT_REJECTED'
    http_status = 422


class UnrecognizedFormat(ImportRejected):
    code = 'UNRECOGNIZED_FORMAT'


class PatientHeaderNotFound(ImportRejected):
    code = 'PATIENT_HEADER_NOT_FOUND'


class PatientNameMissing(ImportRejected):
    code = 'PATIENT_NAME_MISSING'


class RowError(BaseAppException):
    """单行失败。由 services 的逐行循环捕获并写入 ImportReport，不会继续传播。"""

    type = 'row_error'
    code = 'ROW_ERROR'
    http_status = 422
