import os
import sys
import logging
from flask import Flask

from wi_suite.config import load_config
from wi_suite.context import ctx
from wi_suite.event_bus import event_bus
from wi_suite.utils.i18n import load_locale
from wi_suite.utils.net import find_available_port

logger = logging.getLogger(__name__)


def create_app(config=None):
    """
    创建 Flask 应用并注册所有接口。

    Args:
        config: 额外的 Flask 配置 (测试时传入 {"TESTING": True})
    """
    app = Flask(__name__)
    if config:
        app.config.update(config)

    cfg = load_config()
    load_locale(cfg.get('locale'))

    # 触发记录查看器订阅宿主事件
    ctx.viewer.bind(event_bus)

    from wi_suite.api.v1 import st_sync, viewer, lorebooks, bulk_edit, settings
    app.register_blueprint(st_sync.bp)
    app.register_blueprint(viewer.bp)
    app.register_blueprint(lorebooks.bp)
    app.register_blueprint(bulk_edit.bp)
    app.register_blueprint(settings.bp)

    return app


def main():
    logging.basicConfig(
        level=os.getenv("WI_SUITE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    cfg = load_config()
    host = os.getenv("HOST", cfg.get('host', '127.0.0.1'))
    port = find_available_port(int(os.getenv("PORT", cfg.get('port', 5050))), host)
    if port is None:
        logger.error("没有可用端口，退出")
        sys.exit(1)

    app = create_app()
    logger.info(f"World Info Suite running on http://{host}:{port}")
    app.run(host=host, port=port, threaded=True)


if __name__ == "__main__":
    main()
