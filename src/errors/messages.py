"""Localized user-facing messages and recovery actions for classified errors.

Both lookups are exhaustive ``match`` statements over :class:`ErrorType`; a
type checker flags any new enum member that lacks a message.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, assert_never

from src.errors.taxonomy import DomainError, ErrorType

logger = logging.getLogger(__name__)


class Language(StrEnum):
    EN = "en"
    ZH_TW = "zh-TW"

    @classmethod
    def resolve(cls, language: str | None) -> Language:
        """Map a locale tag to a supported language, falling back to English."""
        if not language:
            return cls.EN
        tag = language.replace("_", "-").lower()
        # Traditional Chinese is the only Chinese locale with translations.
        if tag == "zh" or tag.startswith("zh-"):
            return cls.ZH_TW
        return cls.EN


@dataclass(frozen=True)
class UserMessage:
    title: str
    description: str
    technical_details: str | None = None


def _english(error_type: ErrorType) -> tuple[str, str]:
    match error_type:
        case ErrorType.AUTH_EXPIRED:
            return "Session Expired", "Your Microsoft Teams session has expired. Please refresh the page to log in again."
        case ErrorType.AUTH_INVALID:
            return "Authentication Failed", "Unable to authenticate with Microsoft Teams. Please ensure you are logged in."
        case ErrorType.AUTH_MISSING:
            return "Not Signed In", "No Microsoft Teams session was found. Please sign in and open the meeting again."
        case ErrorType.PERMISSION_DENIED:
            return "Access Denied", "You don't have permission to access this transcript. Please check with the meeting organizer."
        case ErrorType.API_KEY_INVALID:
            return "Invalid API Key", "Your AI provider API key is invalid. Please check your settings and update your API key."
        case ErrorType.API_KEY_MISSING:
            return "API Key Required", "Please configure your AI provider API key in the settings."
        case ErrorType.API_RATE_LIMITED:
            return "Rate Limited", "Too many requests to the AI service. Please wait a moment and try again."
        case ErrorType.API_QUOTA_EXCEEDED:
            return "Quota Exceeded", "Your AI service quota has been exceeded. Please check your account or try again later."
        case ErrorType.API_SERVICE_UNAVAILABLE:
            return "Service Unavailable", "The AI service is temporarily unavailable. Please try again in a few minutes."
        case ErrorType.API_CONTEXT_TOO_LONG:
            return "Request Too Long", "The transcript is too long for the selected model. Try processing it in sections."
        case ErrorType.NETWORK_CONNECTION:
            return "Connection Error", "Unable to connect to the service. Please check your internet connection and try again."
        case ErrorType.NETWORK_TIMEOUT:
            return "Request Timed Out", "The service took too long to respond. Please try again."
        case ErrorType.NETWORK_DNS_FAILURE:
            return "Server Not Found", "The service address could not be resolved. Please check your network settings."
        case ErrorType.NETWORK_OFFLINE:
            return "You Are Offline", "No internet connection was detected. Please reconnect and try again."
        case ErrorType.TRANSCRIPT_NOT_FOUND:
            return "Transcript Not Available", "No transcript found for this meeting. Transcripts may take a few minutes to generate after recording."
        case ErrorType.TRANSCRIPT_TOO_LARGE:
            return "Large Transcript", "This transcript is very large. It will be processed in sections for better results."
        case ErrorType.TRANSCRIPT_EMPTY:
            return "Empty Transcript", "The transcript contains no speech to summarize."
        case ErrorType.JSON_PARSE_ERROR:
            return "Unreadable Data", "The response could not be read. Please try again."
        case ErrorType.INVALID_RESPONSE:
            return "Unexpected Response", "The AI service returned a response in an unexpected format. Please try again."
        case ErrorType.MALFORMED_TIMESTAMPS:
            return "Invalid Timestamps", "The transcript contains timestamps that could not be read."
        case ErrorType.MISSING_SPEAKERS:
            return "Missing Speakers", "Some transcript entries have no speaker name."
        case ErrorType.UNKNOWN:
            return "Something Went Wrong", "An unexpected error occurred. Please try again or contact support if the problem persists."
        case _ as unreachable:
            assert_never(unreachable)


def _traditional_chinese(error_type: ErrorType) -> tuple[str, str]:
    match error_type:
        case ErrorType.AUTH_EXPIRED:
            return "登入已過期", "您的 Microsoft Teams 登入已過期，請重新整理頁面以重新登入。"
        case ErrorType.AUTH_INVALID:
            return "驗證失敗", "無法驗證 Microsoft Teams 身份，請確認您已正確登入。"
        case ErrorType.AUTH_MISSING:
            return "尚未登入", "找不到 Microsoft Teams 登入狀態，請登入後重新開啟會議。"
        case ErrorType.PERMISSION_DENIED:
            return "存取被拒絕", "您沒有存取此會議記錄的權限，請聯絡會議主辦人。"
        case ErrorType.API_KEY_INVALID:
            return "API 金鑰無效", "您的 AI 服務 API 金鑰無效，請檢查設定並更新 API 金鑰。"
        case ErrorType.API_KEY_MISSING:
            return "需要 API 金鑰", "請在設定中配置您的 AI 服務 API 金鑰。"
        case ErrorType.API_RATE_LIMITED:
            return "請求頻率限制", "對 AI 服務的請求過於頻繁，請稍候再試。"
        case ErrorType.API_QUOTA_EXCEEDED:
            return "配額已用盡", "您的 AI 服務配額已用盡，請檢查帳戶或稍後再試。"
        case ErrorType.API_SERVICE_UNAVAILABLE:
            return "服務暫時無法使用", "AI 服務暫時無法使用，請幾分鐘後再試。"
        case ErrorType.API_CONTEXT_TOO_LONG:
            return "請求內容過長", "會議記錄超過所選模型的長度上限，請改用分段處理。"
        case ErrorType.NETWORK_CONNECTION:
            return "連線錯誤", "無法連線到服務，請檢查網路連線並重試。"
        case ErrorType.NETWORK_TIMEOUT:
            return "請求逾時", "服務回應時間過長，請重試。"
        case ErrorType.NETWORK_DNS_FAILURE:
            return "找不到伺服器", "無法解析服務位址，請檢查網路設定。"
        case ErrorType.NETWORK_OFFLINE:
            return "目前離線", "未偵測到網路連線，請重新連線後再試。"
        case ErrorType.TRANSCRIPT_NOT_FOUND:
            return "找不到會議記錄", "找不到此會議的逐字稿，會議記錄可能需要錄製後幾分鐘才會產生。"
        case ErrorType.TRANSCRIPT_TOO_LARGE:
            return "會議記錄過大", "此會議記錄很大，將分段處理以獲得更好的結果。"
        case ErrorType.TRANSCRIPT_EMPTY:
            return "會議記錄為空", "此會議記錄沒有可摘要的內容。"
        case ErrorType.JSON_PARSE_ERROR:
            return "資料無法解析", "無法讀取回應內容，請重試。"
        case ErrorType.INVALID_RESPONSE:
            return "回應格式錯誤", "AI 服務回傳了非預期的格式，請重試。"
        case ErrorType.MALFORMED_TIMESTAMPS:
            return "時間戳記無效", "會議記錄中有無法解析的時間戳記。"
        case ErrorType.MISSING_SPEAKERS:
            return "缺少發言者", "部分會議記錄項目沒有發言者名稱。"
        case ErrorType.UNKNOWN:
            return "發生錯誤", "發生未預期的錯誤，請重試或聯絡支援服務。"
        case _ as unreachable:
            assert_never(unreachable)


def get_user_message(
    error: DomainError,
    language: str | None = "en",
    show_technical_details: bool = False,
) -> UserMessage:
    """Title and description for *error* in *language* (unsupported -> English)."""
    match Language.resolve(language):
        case Language.ZH_TW:
            title, description = _traditional_chinese(error.type)
        case Language.EN:
            title, description = _english(error.type)
        case _ as unreachable:
            assert_never(unreachable)
    return UserMessage(
        title=title,
        description=description,
        technical_details=error.message if show_technical_details else None,
    )


class ActionType(StrEnum):
    REFRESH = "refresh"
    HELP = "help"
    SETTINGS = "settings"
    WAIT = "wait"
    RETRY = "retry"
    CHECK = "check"
    CHUNK = "chunk"
    REPORT = "report"


def _noop(name: str) -> Callable[[], None]:
    def hook() -> None:
        logger.info("Recovery action %r requested but no handler is registered", name)

    return hook


@dataclass
class RecoveryHooks:
    """Callbacks the host UI provides for recovery actions.

    Unset hooks log the request and do nothing.
    """

    refresh_page: Callable[[], Any] = field(default_factory=lambda: _noop("refresh_page"))
    open_login_help: Callable[[], Any] = field(default_factory=lambda: _noop("open_login_help"))
    open_settings: Callable[[], Any] = field(default_factory=lambda: _noop("open_settings"))
    open_api_key_help: Callable[[], Any] = field(default_factory=lambda: _noop("open_api_key_help"))
    open_transcript_help: Callable[[], Any] = field(default_factory=lambda: _noop("open_transcript_help"))
    retry_operation: Callable[[], Any] = field(default_factory=lambda: _noop("retry_operation"))
    schedule_retry: Callable[[float], Any] = field(default_factory=lambda: lambda _delay: None)
    check_connection: Callable[[], Any] = field(default_factory=lambda: _noop("check_connection"))
    enable_chunking: Callable[[], Any] = field(default_factory=lambda: _noop("enable_chunking"))
    report_issue: Callable[[DomainError], Any] = field(default_factory=lambda: lambda _error: None)


@dataclass(frozen=True)
class RecoveryAction:
    type: ActionType
    label: str
    primary: bool
    action: Callable[[], Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "label": self.label, "primary": self.primary}


_LABELS: dict[Language, dict[str, str]] = {
    Language.EN: {
        "refresh": "Refresh Page",
        "login_help": "Login Help",
        "check_api_key": "Check API Key",
        "api_key_help": "API Key Help",
        "check_later": "Check Later",
        "transcript_help": "Transcript Help",
        "wait_retry": "Wait and Retry",
        "try_again": "Try Again",
        "check_connection": "Check Connection",
        "sections": "Process in Sections",
        "report": "Report Issue",
    },
    Language.ZH_TW: {
        "refresh": "重新整理頁面",
        "login_help": "登入說明",
        "check_api_key": "檢查 API 金鑰",
        "api_key_help": "API 金鑰說明",
        "check_later": "稍後再查看",
        "transcript_help": "會議記錄說明",
        "wait_retry": "稍候重試",
        "try_again": "重試",
        "check_connection": "檢查連線",
        "sections": "分段處理",
        "report": "回報問題",
    },
}

TRANSCRIPT_RECHECK_DELAY = 5 * 60.0
RATE_LIMIT_RECHECK_DELAY = 60.0


def get_recovery_actions(
    error: DomainError,
    hooks: RecoveryHooks | None = None,
    language: str | None = "en",
) -> list[RecoveryAction]:
    """Ordered recovery actions for *error*; the primary action comes first."""
    hooks = hooks or RecoveryHooks()
    label = _LABELS[Language.resolve(language)]

    def retry_or_report() -> list[RecoveryAction]:
        actions = []
        if error.is_retryable:
            actions.append(RecoveryAction(ActionType.RETRY, label["try_again"], True, hooks.retry_operation))
        actions.append(
            RecoveryAction(ActionType.REPORT, label["report"], not actions, lambda: hooks.report_issue(error))
        )
        return actions

    match error.type:
        case ErrorType.AUTH_EXPIRED | ErrorType.AUTH_INVALID | ErrorType.AUTH_MISSING:
            return [
                RecoveryAction(ActionType.REFRESH, label["refresh"], True, hooks.refresh_page),
                RecoveryAction(ActionType.HELP, label["login_help"], False, hooks.open_login_help),
            ]
        case ErrorType.API_KEY_INVALID | ErrorType.API_KEY_MISSING:
            return [
                RecoveryAction(ActionType.SETTINGS, label["check_api_key"], True, hooks.open_settings),
                RecoveryAction(ActionType.HELP, label["api_key_help"], False, hooks.open_api_key_help),
            ]
        case ErrorType.TRANSCRIPT_NOT_FOUND:
            return [
                RecoveryAction(
                    ActionType.WAIT,
                    label["check_later"],
                    True,
                    lambda: hooks.schedule_retry(TRANSCRIPT_RECHECK_DELAY),
                ),
                RecoveryAction(ActionType.HELP, label["transcript_help"], False, hooks.open_transcript_help),
            ]
        case ErrorType.API_RATE_LIMITED:
            return [
                RecoveryAction(
                    ActionType.WAIT,
                    label["wait_retry"],
                    True,
                    lambda: hooks.schedule_retry(RATE_LIMIT_RECHECK_DELAY),
                ),
            ]
        case (
            ErrorType.NETWORK_CONNECTION
            | ErrorType.NETWORK_TIMEOUT
            | ErrorType.NETWORK_DNS_FAILURE
            | ErrorType.NETWORK_OFFLINE
        ):
            return [
                RecoveryAction(ActionType.RETRY, label["try_again"], True, hooks.retry_operation),
                RecoveryAction(ActionType.CHECK, label["check_connection"], False, hooks.check_connection),
            ]
        case ErrorType.TRANSCRIPT_TOO_LARGE | ErrorType.API_CONTEXT_TOO_LONG:
            return [RecoveryAction(ActionType.CHUNK, label["sections"], True, hooks.enable_chunking)]
        case (
            ErrorType.PERMISSION_DENIED
            | ErrorType.API_QUOTA_EXCEEDED
            | ErrorType.API_SERVICE_UNAVAILABLE
            | ErrorType.TRANSCRIPT_EMPTY
            | ErrorType.JSON_PARSE_ERROR
            | ErrorType.INVALID_RESPONSE
            | ErrorType.MALFORMED_TIMESTAMPS
            | ErrorType.MISSING_SPEAKERS
            | ErrorType.UNKNOWN
        ):
            return retry_or_report()
        case _ as unreachable:
            assert_never(unreachable)
