import logging
import time
import traceback
from datetime import datetime, timezone
from typing import Any

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from errors import ReconciliationRequired, VotingError
from lifecycle import time_range_start
from services import VotingServices, build_services
from settings import SETTINGS
from validation import parse_limit, parse_proposal_id, parse_voter_address

logging.basicConfig(format=SETTINGS.log_format, level=SETTINGS.log_level)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
STARTED_AT = time.time()

app = Flask(__name__)
CORS(
    app,
    origins=[SETTINGS.frontend_url],
    supports_credentials=True,
    methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


def install_services(services: VotingServices, flask_app: Flask = app) -> None:
    flask_app.extensions["voting"] = services


def _services() -> VotingServices:
    services = current_app.extensions.get("voting")
    if services is None:
        services = build_services(SETTINGS)
        install_services(services, current_app)
    return services


def _settings():
    return current_app.extensions["voting"].settings if "voting" in current_app.extensions else SETTINGS


def ok(data: Any = None, status: int = 200, message: str | None = None):
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def fail(error: str, status: int, exc: BaseException | None = None, **extra: Any):
    body: dict[str, Any] = {"success": False, "error": error, **extra}
    if exc is not None and not _settings().is_production:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return jsonify(body), status


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@app.errorhandler(ReconciliationRequired)
def handle_reconciliation_required(exc: ReconciliationRequired):
    return fail(exc.message, exc.status_code, exc, reconciliationRequired=True, transactionHash=exc.transaction_hash)


@app.errorhandler(VotingError)
def handle_voting_error(exc: VotingError):
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    return fail(exc.message, exc.status_code, exc if exc.status_code >= 500 else None)


@app.errorhandler(HTTPException)
def handle_http_error(exc: HTTPException):
    if exc.code == 404:
        return fail(f"Not Found - {request.path}", 404)
    return fail(exc.description or exc.name, exc.code or 500)


@app.errorhandler(Exception)
def handle_unexpected_error(exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return fail("Internal Server Error", 500, exc)


@app.route("/", methods=["GET"])
def index():
    return jsonify({"success": True, "message": "Voting System API", "version": API_VERSION, "timestamp": _now_iso()})


@app.route("/health", methods=["GET"])
def health():
    services = _services()
    return jsonify(
        {
            "success": True,
            "status": "healthy",
            "timestamp": _now_iso(),
            "uptime": time.time() - STARTED_AT,
            "ledger": services.ledger.name,
            "store": services.settings.store_backend,
        }
    )


# Proposals


@app.route("/api/proposals", methods=["GET"])
def list_proposals():
    active_raw = request.args.get("active")
    active = None if active_raw is None else active_raw == "true"
    page = parse_limit(request.args.get("page", "1"), default=1, maximum=1_000_000)
    limit = parse_limit(request.args.get("limit", "50"), default=50)
    result = _services().lifecycle.list_proposals(
        contract_address=request.args.get("contractAddress") or None,
        active=active,
        page=page,
        limit=limit,
    )
    return ok({"proposals": [p.to_dict() for p in result["proposals"]], "pagination": result["pagination"]})


@app.route("/api/proposals/active", methods=["GET"])
def active_proposals():
    services = _services()
    proposals, total = services.proposals.query(contract_address=services.lifecycle.scope, active=True)
    return ok({"proposals": [p.to_dict() for p in proposals], "count": total})


@app.route("/api/proposals/analytics", methods=["GET"])
def proposal_analytics():
    return ok(_services().lifecycle.analytics(request.args.get("timeRange")))


@app.route("/api/proposals/<proposal_id>", methods=["GET"])
def get_proposal(proposal_id: str):
    services = _services()
    proposal = services.lifecycle.get(proposal_id)
    votes = services.votes.for_proposal(services.lifecycle.scope, proposal.proposal_id)
    return ok({"proposal": proposal.to_dict(), "votes": [v.to_dict() for v in votes], "voteCount": len(votes)})


@app.route("/api/proposals/<proposal_id>/stats", methods=["GET"])
def proposal_stats(proposal_id: str):
    return ok(_services().lifecycle.stats(proposal_id))


@app.route("/api/proposals", methods=["POST"])
def create_proposal():
    data = _json_body()
    proposal = _services().lifecycle.create_proposal(data.get("title"), data.get("description"), data.get("deadline", 0))
    return ok(proposal.to_dict(), 201, "Proposal created successfully")


@app.route("/api/proposals/<proposal_id>", methods=["PUT"])
def update_proposal(proposal_id: str):
    proposal = _services().lifecycle.update_proposal(parse_proposal_id(proposal_id), _json_body())
    return ok(proposal.to_dict(), message="Proposal updated successfully")


@app.route("/api/proposals/<proposal_id>/close", methods=["POST"])
def close_proposal(proposal_id: str):
    proposal = _services().lifecycle.close_proposal(parse_proposal_id(proposal_id))
    return ok(proposal.to_dict(), message="Proposal closed")


@app.route("/api/proposals/<proposal_id>", methods=["DELETE"])
def delete_proposal(proposal_id: str):
    pid = parse_proposal_id(proposal_id)
    removed = _services().lifecycle.delete_proposal(pid)
    return ok({"proposalId": pid, "deletedVotes": removed}, message="Proposal deleted successfully")


@app.route("/api/proposals/<proposal_id>/reconcile", methods=["POST"])
def reconcile_proposal(proposal_id: str):
    return ok(_services().engine.reconcile_proposal(proposal_id))


# Votes


@app.route("/api/votes", methods=["POST"])
def cast_vote():
    data = _json_body()
    receipt = _services().engine.cast_vote(data.get("proposalId"), data.get("voterAddress"))
    return ok(receipt.to_dict(), 201, "Vote cast successfully")


def _vote_status(proposal_id: Any, voter_address: Any):
    vote = _services().engine.find_vote(proposal_id, voter_address)
    return ok({"hasVoted": vote is not None, "vote": vote.to_dict() if vote else None})


@app.route("/api/votes/check", methods=["GET"])
def check_vote():
    return _vote_status(request.args.get("proposalId"), request.args.get("voterAddress"))


@app.route("/api/votes/status/<proposal_id>/<voter_address>", methods=["GET"])
def vote_status(proposal_id: str, voter_address: str):
    return _vote_status(proposal_id, voter_address)


@app.route("/api/votes/proposal/<proposal_id>", methods=["GET"])
def votes_for_proposal(proposal_id: str):
    services = _services()
    pid = parse_proposal_id(proposal_id)
    votes = services.votes.for_proposal(services.engine.scope, pid)
    return ok({"proposalId": pid, "votes": [v.to_dict() for v in votes], "count": len(votes)})


@app.route("/api/votes/voter/<voter_address>", methods=["GET"])
def votes_by_voter(voter_address: str):
    voter = parse_voter_address(voter_address)
    votes = _services().votes.by_voter(voter, request.args.get("contractAddress") or None)
    return ok({"voterAddress": voter, "votes": [v.to_dict() for v in votes], "count": len(votes)})


@app.route("/api/votes/<vote_id>/verify", methods=["PUT"])
def verify_vote(vote_id: str):
    vote = _services().engine.verify_vote(vote_id)
    return ok(vote.summary(), message="Vote verified successfully")


@app.route("/api/votes/stats", methods=["GET"])
def vote_stats():
    return ok(_services().votes.stats(request.args.get("contractAddress") or None))


@app.route("/api/votes/recent", methods=["GET"])
def recent_votes():
    votes = _services().votes.recent(parse_limit(request.args.get("limit", "10"), default=10))
    return ok({"votes": [v.to_dict() for v in votes], "count": len(votes)})


@app.route("/api/votes/analytics", methods=["GET"])
def vote_analytics():
    key, since = time_range_start(request.args.get("timeRange"))
    buckets = _services().votes.analytics(since, request.args.get("contractAddress") or None)
    return ok({"timeRange": key, "analytics": buckets})


# Ledger contract


@app.route("/api/contract/info", methods=["GET"])
def contract_info():
    return ok(_services().ledger.contract_info())


@app.route("/api/contract/abi", methods=["GET"])
def contract_abi():
    return ok({"abi": _services().ledger.contract_abi()})


@app.route("/api/contract/stats", methods=["GET"])
def contract_stats():
    services = _services()
    scope = services.ledger.contract_address
    vote_stats = services.votes.stats(scope)
    return ok(
        {
            "totalProposals": services.proposals.count(scope),
            "activeProposals": services.proposals.count(scope, active=True),
            "totalVotes": vote_stats["totalVotes"],
            "uniqueVoters": vote_stats["uniqueVoterCount"],
        }
    )


@app.route("/api/contract/health", methods=["GET"])
def contract_health():
    return ok({"isHealthy": _services().ledger.is_healthy(), "timestamp": _now_iso()})


@app.route("/api/contract/sync", methods=["POST"])
def contract_sync():
    return ok(_services().lifecycle.sync_from_ledger(), message="Proposals synced successfully")


@app.route("/api/contract/reconcile", methods=["POST"])
def contract_reconcile():
    return ok(_services().engine.reconcile_all())


if __name__ == "__main__":
    install_services(build_services(SETTINGS))
    app.run(port=SETTINGS.port, debug=not SETTINGS.is_production)
