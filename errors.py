from __future__ import annotations


class PlaytimeError(Exception):
    """游戏时长追踪相关错误的基类"""


class UpstreamUnavailable(PlaytimeError):
    """
    Steam Web API 无法访问或返回错误

    属于暂时性错误：本次运行放弃，等下一个调度周期再试。
    """


class MalformedUpstreamRecord(PlaytimeError):
    """上游返回的单个游戏条目无法解析"""


class StoreUnavailable(PlaytimeError):
    """持久化存储完全不可用"""


class StoreWriteFailure(PlaytimeError):
    """单条记录写入失败（已按规则重试）"""

    def __init__(self, record_id: str, message: str) -> None:
        super().__init__(f"{record_id}: {message}")
        self.record_id = record_id
