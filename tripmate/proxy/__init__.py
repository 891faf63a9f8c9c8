from tripmate.proxy.app import ProxyServer, create_proxy_app

__all__ = ["ProxyServer", "create_proxy_app"]
