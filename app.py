"""Food delivery order API Flask application."""

from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, jsonify, request

from config import ServerConfig
from delivery.db.session import make_session_factory
from delivery.services.auth_service import AuthService
from delivery.services.catalog_service import CatalogService
from delivery.services.errors import OrderError
from delivery.services.logging import log_event
from delivery.services.order_service import OrderService
from delivery.services.payment_gateway import StripeGateway
from delivery.services.payment_service import PaymentService
from delivery.services.rate_limiter import RateLimiter
from delivery.services.status_service import OrderStatusService
from routes import orders, payments


def build_components(config: ServerConfig, session_factory=None, gateway=None) -> dict:
    app_config = config.app
    session_factory = session_factory or make_session_factory(app_config.database_url)
    gateway = gateway or StripeGateway(
        app_config.gateway_secret_key,
        base_url=app_config.gateway_base_url,
        webhook_secret=app_config.webhook_secret,
        webhook_tolerance=app_config.webhook_tolerance_seconds,
    )
    catalog = CatalogService(session_factory)
    return {
        "auth": AuthService(app_config.jwt_secret, session_factory),
        "catalog": catalog,
        "orders": OrderService(
            session_factory,
            catalog,
            currency=app_config.currency,
            tax_rate=app_config.tax_rate,
            service_fee_rate=app_config.service_fee_rate,
        ),
        "status": OrderStatusService(session_factory),
        "payments": PaymentService(gateway, session_factory, currency=app_config.currency),
        "rate_limiter": RateLimiter(
            session_factory,
            limit=config.rate_limit,
            window_seconds=config.rate_limit_window_seconds,
        ),
    }


def create_app(config: Optional[ServerConfig] = None, *, session_factory=None, gateway=None) -> Flask:
    config = config or ServerConfig.load()
    logging.basicConfig(level=config.app.log_level.upper())
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.app.secret_key
    app.config["DELIVERY_CONFIG"] = config
    app.extensions["delivery_components"] = build_components(config, session_factory, gateway)

    @app.before_request
    def throttle():
        if request.endpoint == "delivery_payments.webhook":
            return None
        limiter = app.extensions["delivery_components"]["rate_limiter"]
        client = request.headers.get("X-Forwarded-For", request.remote_addr or "unknown").split(",")[0].strip()
        result = limiter.hit(client)
        if not result.allowed:
            return jsonify(
                {
                    "success": False,
                    "error": "rate_limited",
                    "message": "Too many requests, please try again later.",
                    "reset_at": result.reset_at.isoformat(),
                }
            ), 429
        return None

    @app.errorhandler(OrderError)
    def handle_order_error(exc: OrderError):
        level = "error" if exc.status_code >= 500 else "info"
        log_event(level, "request.failed", path=request.path, error=exc.kind, message=exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    app.register_blueprint(orders.orders_bp)
    app.register_blueprint(payments.payments_bp)
    return app


def main() -> None:
    config = ServerConfig.load()
    app = create_app(config)
    app.run(host=config.host, port=config.port, debug=config.debug)


if __name__ == "__main__":
    main()
