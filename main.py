"""
TripMate主入口
启动API密钥代理服务, 并维护外部API缓存
"""

import asyncio

import uvicorn
from loguru import logger

from tripmate.datasource import ExternalApiService
from tripmate.proxy import create_proxy_app
from tripmate.services import Gateway
from tripmate.services.gateway import default_services
from tripmate.settings import global_settings


async def main() -> None:
    """主函数"""
    logger.info("Starting TripMate API proxy...")

    gateway = Gateway(default_services(global_settings.api_request_timeout))
    service = ExternalApiService(gateway, global_settings)

    try:
        # 启动缓存清理任务
        service.start()
        logger.info(f"API key status: {service.get_api_status()}")

        # 启动代理服务
        app = create_proxy_app(gateway, global_settings)
        config = uvicorn.Config(
            app,
            host=global_settings.proxy_host,
            port=global_settings.proxy_port,
            log_level="info",
        )
        logger.info(
            f"Proxy listening on {global_settings.proxy_host}:{global_settings.proxy_port}"
        )
        await uvicorn.Server(config).serve()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        # 清理资源
        service.stop()
        await gateway.close()
        logger.info("TripMate stopped")


if __name__ == "__main__":
    asyncio.run(main())
