"""
命令模块 - 网关对外的命令接口（HTTP 层与 CLI 共用）。
"""

from wagate.commands.service import BulkItemResult, BulkResult, CommandService

__all__ = ["BulkItemResult", "BulkResult", "CommandService"]
