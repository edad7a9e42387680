import logging
import os
import threading
from datetime import datetime, timedelta
from uuid import uuid4

import orjson
from dotenv import load_dotenv
from flask import Flask, Response, request
from flask_cors import CORS

from aggregation import TOP_ALBUMS, TOP_ARTISTS, TOP_COUNTRIES, TOP_PODCASTS, aggregate
from charts import DEFAULT_TAB, TABS, chart_data
from ingest import UploadSession, expand_uploads, read_files

load_dotenv()

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = int(os.getenv('MAX_UPLOAD_MB', '500')) * 1024 * 1024

# CORS configuration
allowed_origins = os.getenv('ALLOWED_ORIGINS', '*').split(',')
CORS(app, origins=allowed_origins)

READ_WORKERS = int(os.getenv('READ_WORKERS', '4'))

# In-memory session store
sessions = {}
sessions_lock = threading.Lock()

# Session cleanup settings
SESSION_MAX_AGE = timedelta(minutes=int(os.getenv('SESSION_MAX_AGE_MINUTES', '60')))

NO_FILES_MESSAGE = "Please choose at least one JSON file"

TRUNCATION_PARAMS = {
    'top_countries': TOP_COUNTRIES,
    'top_artists': TOP_ARTISTS,
    'top_albums': TOP_ALBUMS,
    'top_podcasts': TOP_PODCASTS,
}


def json_response(payload, status=200):
    return Response(orjson.dumps(payload), status=status, mimetype='application/json')


def error_response(message, status):
    return json_response({"error": message}, status)


def cleanup_old_sessions():
    """Remove sessions idle for longer than SESSION_MAX_AGE."""
    now = datetime.now()
    with sessions_lock:
        expired = [
            sid for sid, data in list(sessions.items())
            if now - data.get('last_active', now) > SESSION_MAX_AGE
        ]
        for sid in expired:
            del sessions[sid]
    if expired:
        logger.info("Expired %d sessions", len(expired))


def create_session():
    session_id = str(uuid4())
    with sessions_lock:
        sessions[session_id] = {"upload": UploadSession(), "last_active": datetime.now()}
    return session_id


def touch_session(session_id):
    """Mark a session as active; returns False if it no longer exists."""
    with sessions_lock:
        entry = sessions.get(session_id)
        if entry is None:
            return False
        entry["last_active"] = datetime.now()
        return True


def get_session(session_id):
    entry = sessions.get(session_id)
    return entry["upload"] if entry else None


def parse_truncation_args(args):
    """
    Read top-N overrides from query parameters.

    Raises:
        ValueError: If a value is not a positive integer
    """
    limits = {}
    for name, default in TRUNCATION_PARAMS.items():
        raw = args.get(name)
        if raw is None:
            limits[name] = default
            continue
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{name} must be a positive integer")
        if value < 1:
            raise ValueError(f"{name} must be a positive integer")
        limits[name] = value
    return limits


@app.errorhandler(413)
def too_large(_):
    return error_response("Upload too large", 413)


@app.route('/health', methods=['GET'])
def health():
    return json_response({"status": "ok"})


@app.route('/upload', methods=['POST'])
def upload():
    cleanup_old_sessions()

    uploads = [
        f for f in request.files.getlist('files') + request.files.getlist('file')
        if f.filename
    ]
    if not uploads:
        return error_response(NO_FILES_MESSAGE, 400)

    session_id = request.form.get('session_id')
    if session_id:
        if not touch_session(session_id):
            return error_response("Session not found", 404)
    else:
        session_id = create_session()

    session = get_session(session_id)
    if session is None:
        return error_response("Session not found", 404)
    token = session.begin_batch()

    filenames = [f.filename for f in uploads]
    files, failures = expand_uploads([(f.filename, f.read()) for f in uploads])
    results = read_files(files, max_workers=READ_WORKERS)

    if not session.commit(token, filenames, results):
        return error_response("Upload superseded by a newer batch", 409)

    failures.extend(r for r in results if not r.ok)
    return json_response({
        "session_id": session_id,
        "generation": token,
        "files": filenames,
        "default_tab": DEFAULT_TAB,
        "errors": [{"file": r.filename, "message": r.error} for r in failures],
        "invalid_records": sum(r.invalid_count for r in results),
        "event_count": sum(len(r.events) for r in results if r.ok),
    })


@app.route('/session/<session_id>', methods=['GET'])
def session_info(session_id):
    session = get_session(session_id)
    if session is None:
        return error_response("Session not found", 404)

    return json_response({
        "session_id": session_id,
        "generation": session.committed_generation,
        "files": session.filenames,
        "default_tab": DEFAULT_TAB,
        "event_count": len(session.events),
    })


@app.route('/summary/<session_id>', methods=['GET'])
def summary(session_id):
    session = get_session(session_id)
    if session is None or session.summary is None:
        return error_response("Session not found", 404)

    try:
        limits = parse_truncation_args(request.args)
    except ValueError as e:
        return error_response(str(e), 400)

    if limits == TRUNCATION_PARAMS:
        result = session.summary
    else:
        result = aggregate(session.events, **limits)
    return json_response(result.to_dict())


@app.route('/charts/<session_id>/<tab>', methods=['GET'])
def charts(session_id, tab):
    session = get_session(session_id)
    if session is None or session.summary is None:
        return error_response("Session not found", 404)

    if tab not in TABS:
        return error_response(f"Unknown tab: {tab}", 404)

    return json_response({"tab": tab, "data": chart_data(session.summary, tab)})


if __name__ == '__main__':
    app.run(debug=os.getenv('FLASK_ENV') == 'development', port=5000)
