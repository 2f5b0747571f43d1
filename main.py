#!/usr/bin/env python3
"""
Salesforce 与暂存库同步服务
主程序入口
"""
import sys
import json
import signal
import time
import argparse
from typing import Optional
from loguru import logger

from salesforce_db_sync.config.config import Config
from salesforce_db_sync.core.sync_service import SyncService
from salesforce_db_sync.monitor.logger import setup_logger


class SyncApplication:
    """同步应用主类"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.sync_service: Optional[SyncService] = None
        self.running = False

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """信号处理器"""
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop()

    def initialize(self):
        """初始化应用"""
        try:
            config = Config(self.config_path)
            setup_logger(config.monitor)

            logger.info("=" * 60)
            logger.info("Salesforce Database Sync Service")
            logger.info("=" * 60)
            logger.info(f"Config file: {config.config_path}")
            logger.info(f"Log level: {config.monitor.log_level}")
            logger.info(f"Poll interval: {config.sync.poll_interval}s")
            logger.info(f"Objects: {', '.join(config.sync.objects.keys())}")

            self.sync_service = SyncService(config)

            logger.info("Application initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize application: {e}")
            raise

    def start(self):
        """启动应用"""
        if not self.sync_service:
            raise RuntimeError("Application not initialized")

        try:
            self.running = True
            self.sync_service.start()

            logger.info("Application started, press Ctrl+C to stop")

            while self.running:
                try:
                    time.sleep(60)
                    if self.running:
                        self._print_status()
                except KeyboardInterrupt:
                    break

        except Exception as e:
            logger.error(f"Application error: {e}")
            raise
        finally:
            self.stop()

    def stop(self):
        """停止应用"""
        if not self.running:
            return

        self.running = False

        if self.sync_service:
            self.sync_service.stop()

        logger.info("Application stopped")

    def _print_status(self):
        """打印状态信息"""
        if not self.sync_service:
            return

        status = self.sync_service.get_status()

        logger.info("-" * 50)
        logger.info("Sync Service Status")
        logger.info("-" * 50)
        logger.info(f"Running: {status['running']}")
        if status['uptime_seconds'] is not None:
            logger.info(f"Uptime: {status['uptime_seconds']:.0f} seconds")
        logger.info(f"Cycles: {status['sync_stats']['cycles']}")

        for name, info in status['objects'].items():
            if info['pending_bulk_job']:
                logger.info(f"{name}: bulk job {info['pending_bulk_job']} in progress")
            else:
                logger.info(f"{name}: watermark {info['watermark']}")

        if self.sync_service.metrics:
            health = self.sync_service.metrics.get_health_status()
            logger.info(f"Health: {health['status']}")
            for issue in health['issues']:
                logger.warning(issue)
        logger.info("-" * 50)


def main():
    """主函数"""
    parser = argparse.ArgumentParser(
        description='Salesforce Database Sync Service'
    )
    parser.add_argument(
        '-c', '--config',
        help='Path to configuration file',
        default=None
    )
    parser.add_argument(
        '--init',
        action='store_true',
        help='Initialize configuration file'
    )
    parser.add_argument(
        '--test',
        action='store_true',
        help='Test connections and exit'
    )
    parser.add_argument(
        '--sync-tables',
        action='store_true',
        help='Create or update staging tables and exit'
    )
    parser.add_argument(
        '--pull',
        action='store_true',
        help='Pull records from Salesforce once and exit'
    )
    parser.add_argument(
        '--push',
        action='store_true',
        help='Push pending rows to Salesforce once and exit'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single full sync cycle and exit'
    )
    parser.add_argument(
        '--reset-cursor',
        metavar='OBJECT',
        help='Reset sync cursor for the object so the next pull runs a full load'
    )
    parser.add_argument(
        '--status',
        action='store_true',
        help='Show sync cursor status of configured objects'
    )

    args = parser.parse_args()

    if args.init:
        config = Config(args.config)
        config.save()
        print(f"Configuration file created: {config.config_path}")
        print("Please edit the configuration file and run the service again")
        return

    app = SyncApplication(args.config)
    app.initialize()
    service = app.sync_service

    if args.test:
        logger.info("Testing connections...")
        ok = service.test_connections()
        logger.info(f"Connection test {'passed' if ok else 'failed'}")
        sys.exit(0 if ok else 1)

    if args.reset_cursor:
        service.reset_cursor(args.reset_cursor)
        return

    if args.status:
        print(json.dumps(service.get_status(), indent=2, ensure_ascii=False, default=str))
        return

    if args.sync_tables or args.pull or args.push:
        if args.sync_tables:
            service.sync_tables()
        if args.pull:
            service.pull()
        if args.push:
            service.push()
        return

    if args.once:
        service.run_cycle()
        return

    try:
        app.start()
    except Exception as e:
        logger.error(f"Service failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
