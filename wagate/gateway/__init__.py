"""
网关模块 - 通过 HTTP 暴露命令接口。
"""

from wagate.gateway.server import build_service, create_app

__all__ = ["build_service", "create_app"]
