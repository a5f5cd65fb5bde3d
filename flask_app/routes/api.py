# flask_app/routes/api.py

"""
JSON API routes for transactions, customers and dashboard metrics
"""

import math
from datetime import date, datetime, time, timedelta, timezone

from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import func, or_

from flask_app.models import (
    REFUNDED_STATUS,
    SETTLED_STATUS,
    Customer,
    CustomerType,
    Transaction,
    db,
)
from flask_app.models.base import utc_now

DEFAULT_TRANSACTION_LIMIT = 50
DEFAULT_CUSTOMER_LIMIT = 20
MAX_PAGE_LIMIT = 200


def _pagination_args(default_limit):
    """Read ``page``/``limit`` query parameters, clamping to sane bounds."""
    page = request.args.get("page", 1, type=int) or 1
    limit = request.args.get("limit", default_limit, type=int) or default_limit
    return max(page, 1), min(max(limit, 1), MAX_PAGE_LIMIT)


def _pagination_payload(page, limit, total):
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }


def _parse_day(value):
    if not value:
        return None
    return date.fromisoformat(value.strip())


def _to_currency_units(minor_units):
    return round((minor_units or 0) / 100, 2)


def register_api_routes(app):
    """Register data API routes"""

    @app.route("/api/transactions", methods=["GET"])
    @login_required
    def api_list_transactions():
        """
        List synced transactions, newest first.
        Supports page, limit, status, search, startDate and endDate filters.
        """
        page, limit = _pagination_args(DEFAULT_TRANSACTION_LIMIT)
        try:
            start_day = _parse_day(request.args.get("startDate"))
            end_day = _parse_day(request.args.get("endDate"))
        except ValueError:
            return jsonify({"error": "startDate and endDate must be YYYY-MM-DD"}), 400

        try:
            query = Transaction.query
            status = request.args.get("status", "").strip()
            if status:
                query = query.filter(func.upper(Transaction.status) == status.upper())

            search = request.args.get("search", "").strip()
            if search:
                term = f"%{search}%"
                query = query.filter(
                    or_(
                        Transaction.id.ilike(term),
                        Transaction.email_address.ilike(term),
                        Transaction.description.ilike(term),
                    )
                )
            if start_day:
                start_at = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
                query = query.filter(Transaction.processor_created_at >= start_at)
            if end_day:
                end_at = datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=timezone.utc)
                query = query.filter(Transaction.processor_created_at < end_at)

            total = query.count()
            transactions = (
                query.order_by(Transaction.processor_created_at.desc(), Transaction.id)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return jsonify(
                {
                    "transactions": [t.to_dict(include_customer=True) for t in transactions],
                    "pagination": _pagination_payload(page, limit, total),
                }
            )
        except Exception as e:
            current_app.logger.error(f"Error listing transactions: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to fetch transactions"}), 500

    @app.route("/api/transactions/<transaction_id>", methods=["GET"])
    @login_required
    def api_get_transaction(transaction_id):
        transaction = db.session.get(Transaction, transaction_id)
        if transaction is None:
            return jsonify({"error": "Transaction not found"}), 404
        return jsonify(transaction.to_dict(include_customer=True, include_raw=True))

    @app.route("/api/transactions/<transaction_id>/refund", methods=["POST"])
    @login_required
    def api_refund_transaction(transaction_id):
        """
        Mark a transaction refunded. The optional ``amount`` (minor units)
        defaults to the full transaction amount.
        """
        transaction = db.session.get(Transaction, transaction_id)
        if transaction is None:
            return jsonify({"error": "Transaction not found"}), 404
        if transaction.is_refunded:
            return jsonify({"error": "Transaction has already been refunded"}), 409

        payload = request.get_json(silent=True) or {}
        amount = payload.get("amount", transaction.amount)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            return jsonify({"error": "amount must be a positive integer in minor units"}), 400
        if amount > transaction.amount:
            return jsonify({"error": "amount cannot exceed the transaction amount"}), 400
        reason = payload.get("reason")
        if reason is not None and not isinstance(reason, str):
            return jsonify({"error": "reason must be a string"}), 400

        try:
            transaction.status = REFUNDED_STATUS
            transaction.refunded_at = utc_now()
            transaction.refund_amount = amount
            transaction.refund_reason = reason.strip() if reason else None
            if transaction.customer is not None:
                db.session.flush()
                transaction.customer.refresh_totals()
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error refunding transaction {transaction_id}: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to process refund"}), 500

        current_app.logger.info(
            f"Transaction {transaction_id} refunded by {current_user.email}",
            extra={"transaction_id": transaction_id, "refund_amount": amount},
        )
        return jsonify(
            {
                "message": "Refund processed successfully",
                "refundedAmount": amount,
                "transaction": transaction.to_dict(),
            }
        )

    @app.route("/api/customers", methods=["GET"])
    @login_required
    def api_list_customers():
        """List customers; supports page, limit, search (name/email) and type filters."""
        page, limit = _pagination_args(DEFAULT_CUSTOMER_LIMIT)
        customer_type = request.args.get("type", "").strip().lower()
        if customer_type and customer_type not in {t.value for t in CustomerType}:
            return jsonify({"error": f"Unknown customer type: {customer_type}"}), 400

        try:
            query = Customer.query
            if customer_type:
                query = query.filter(Customer.customer_type == customer_type)
            search = request.args.get("search", "").strip()
            if search:
                term = f"%{search}%"
                full_name = Customer.first_name + " " + Customer.last_name
                query = query.filter(
                    or_(
                        Customer.first_name.ilike(term),
                        Customer.last_name.ilike(term),
                        full_name.ilike(term),
                        Customer.email.ilike(term),
                    )
                )
            total = query.count()
            customers = (
                query.order_by(Customer.last_name, Customer.first_name, Customer.id)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return jsonify(
                {
                    "customers": [c.to_dict() for c in customers],
                    "pagination": _pagination_payload(page, limit, total),
                }
            )
        except Exception as e:
            current_app.logger.error(f"Error listing customers: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to fetch customers"}), 500

    @app.route("/api/customers/<customer_id>", methods=["GET"])
    @login_required
    def api_get_customer(customer_id):
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            return jsonify({"error": "Customer not found"}), 404
        return jsonify(customer.to_dict())

    @app.route("/api/customers/<customer_id>/transactions", methods=["GET"])
    @login_required
    def api_customer_transactions(customer_id):
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            return jsonify({"error": "Customer not found"}), 404
        page, limit = _pagination_args(DEFAULT_TRANSACTION_LIMIT)
        query = customer.transactions
        total = query.count()
        transactions = (
            query.order_by(Transaction.processor_created_at.desc(), Transaction.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return jsonify(
            {
                "customer": customer.to_dict(),
                "transactions": [t.to_dict() for t in transactions],
                "pagination": _pagination_payload(page, limit, total),
            }
        )

    @app.route("/api/dashboard/metrics", methods=["GET"])
    @login_required
    def api_dashboard_metrics():
        """Headline donation figures over settled transactions, in currency units."""
        try:
            settled = Transaction.query.filter(Transaction.status == SETTLED_STATUS)
            total_minor, settled_count = settled.with_entities(
                func.coalesce(func.sum(Transaction.amount), 0), func.count(Transaction.id)
            ).one()

            now = utc_now()
            month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
            this_month_minor = (
                settled.filter(Transaction.processor_created_at >= month_start)
                .with_entities(func.coalesce(func.sum(Transaction.amount), 0))
                .scalar()
            )
            active_subscribers = Customer.query.filter(
                Customer.customer_type == CustomerType.RECURRING.value
            ).count()

            average_minor = (total_minor / settled_count) if settled_count else 0
            return jsonify(
                {
                    "totalDonations": _to_currency_units(total_minor),
                    "activeSubscribers": active_subscribers,
                    "thisMonth": _to_currency_units(this_month_minor),
                    "avgDonation": _to_currency_units(average_minor),
                }
            )
        except Exception as e:
            current_app.logger.error(f"Error computing dashboard metrics: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to fetch dashboard metrics"}), 500
