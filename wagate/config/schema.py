"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 wagate 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── gateway   - HTTP 网关服务配置（监听地址、端口、API Key）
├── webhook   - 业务后端 Webhook 配置（基础地址、共享密钥、超时）
├── bridge    - WhatsApp 桥接服务配置（WebSocket 地址、令牌、超时）
├── storage   - 凭据存储配置（会话目录）
└── sessions  - 会话行为配置（启动等待、自动恢复、批量发送间隔等）
"""

from pathlib import Path
from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings


class GatewayConfig(BaseModel):
    """HTTP 网关服务配置（命令接口）。"""
    host: str = "0.0.0.0"  # 监听地址（0.0.0.0 表示监听所有网卡）
    port: int = 3000  # 监听端口
    api_key: str = ""  # 调用方需在 X-API-Key 请求头中携带的密钥（留空表示不校验）


class WebhookConfig(BaseModel):
    """业务后端 Webhook 配置。事件以 POST <url>/whatsapp/<事件名> 的形式推送。"""
    url: str = "http://localhost:8080/api"  # 后端基础地址（留空表示不推送）
    api_key: str = ""  # 随 X-API-Key 请求头发送的共享密钥
    timeout_s: float = 10.0  # 单次投递超时（秒）
    flush_timeout_s: float = 15.0  # 停机时等待剩余通知投递的最长时间（秒）


class BridgeConfig(BaseModel):
    """WhatsApp 桥接服务配置。每个会话各自建立一条到桥接服务的 WebSocket 连接。"""
    url: str = "ws://localhost:3001"  # 桥接服务的 WebSocket 地址
    token: str = ""  # 桥接认证令牌（可选但推荐设置）
    connect_timeout_s: float = 15.0  # 建立连接的超时（秒）
    request_timeout_s: float = 60.0  # 单次请求（发送、注销等）的超时（秒）


class StorageConfig(BaseModel):
    """凭据存储配置。每个用户在 sessions_dir 下拥有一个 session-user-<id> 目录。"""
    sessions_dir: str = "./storage/sessions"


class SessionsConfig(BaseModel):
    """会话行为配置。"""
    startup_grace_s: float = 1.0  # initialize() 启动客户端后等待的时间（秒），不等待连接完成
    restore_on_start: bool = True  # 网关启动时是否从磁盘恢复会话
    media_fetch_timeout_s: float = 30.0  # 下载待发送媒体的超时（秒）
    bulk_delay_min_s: float = 3.0  # 批量发送时两条消息之间的最小间隔（秒）
    bulk_delay_max_s: float = 8.0  # 批量发送时两条消息之间的最大间隔（秒）


class Config(BaseSettings):
    """
    wagate 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: WAGATE_
    - 嵌套分隔符: __ (双下划线)
    - 示例: WAGATE_WEBHOOK__URL=http://backend:8080/api 可覆盖 webhook.url
    """
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)

    @property
    def sessions_path(self) -> Path:
        """获取展开后的会话目录路径（将 ~ 展开为用户主目录）。"""
        return Path(self.storage.sessions_dir).expanduser()

    model_config = ConfigDict(
        env_prefix="WAGATE_",
        env_nested_delimiter="__"
    )
