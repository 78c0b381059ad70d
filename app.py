import logging
from datetime import datetime
from queue import Full, Queue
from typing import Any, Dict

from flask import Flask, Response, jsonify, request
from flask_socketio import SocketIO, emit

from layerforge.catalog import load_catalog
from layerforge.config import get_settings
from layerforge.pipeline import compile_graph

settings = get_settings()

app = Flask(__name__)
socketio = SocketIO(app, cors_allowed_origins="*")

# Recent log records, replayed to clients on 'request_logs'
log_queue = Queue(maxsize=500)


class SocketIOLogHandler(logging.Handler):
    def emit(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S'),
            'level': record.levelname,
            'message': self.format(record),
            'module': record.name
        }
        try:
            log_queue.put_nowait(log_entry)
        except Full:
            log_queue.get_nowait()
            log_queue.put_nowait(log_entry)
        socketio.emit('log', log_entry)


# Library modules log under "layerforge.*"
logger = logging.getLogger('layerforge')
logger.setLevel(settings.log_level)
handler = SocketIOLogHandler()
handler.setFormatter(logging.Formatter('%(message)s'))
logger.addHandler(handler)

console_handler = logging.StreamHandler()
console_handler.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)s: %(message)s'))
logger.addHandler(console_handler)

catalog = load_catalog(settings.catalog_path)


def script_filename(filename=None) -> str:
    """Derive a safe .py filename from the client's graph file name."""
    base_name = (filename or "model").rsplit("/", 1)[-1]
    if base_name.endswith(".json"):
        base_name = base_name[:-len(".json")]
    base_name = "".join(c for c in base_name if c.isalnum() or c in (' ', '-', '_')).strip()
    return f"{base_name or 'model'}.py"


def compile_payload(data: Any) -> Dict[str, Any]:
    """Run the pipeline on a request body {graph: {nodes, edges}, input_shape, style}."""
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    graph = data.get("graph", data)
    if not isinstance(graph, dict):
        raise ValueError("'graph' must be an object with 'nodes' and 'edges'")
    nodes = graph.get("nodes", [])
    edges = graph.get("edges", graph.get("links", []))
    if not isinstance(nodes, list) or not isinstance(edges, list):
        raise ValueError("'nodes' and 'edges' must be lists")

    result = compile_graph(
        nodes,
        edges,
        catalog,
        root_input_shape=data.get("input_shape") or settings.default_input_shape,
        style=data.get("style", "auto"),
    )
    return result.to_dict()


@app.route("/api/status", methods=["GET"])
def status():
    return jsonify({"ok": True, "layers": len(catalog), "catalog": catalog.source})


@app.route("/api/layers", methods=["GET"])
def list_layers():
    return jsonify({"layers": catalog.describe()})


@app.route("/api/compile", methods=["POST"])
def compile_graph_route():
    try:
        data = request.get_json(force=True)
        return jsonify(compile_payload(data))
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400


@app.route("/api/generate_script", methods=["POST"])
def generate_script():
    try:
        data = request.get_json(force=True)
        payload = compile_payload(data)
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400

    filename = script_filename(data.get("filename"))
    if not payload["valid"]:
        return jsonify({"ok": False, "error": "; ".join(e["message"] for e in payload["errors"])}), 400
    logger.info("Generated %s (%s form)", filename, payload["style"])
    return Response(
        payload["code"] + "\n",
        mimetype="text/x-python",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@socketio.on('connect')
def handle_connect():
    logger.info("Client connected")


@socketio.on('disconnect')
def handle_disconnect():
    logger.info("Client disconnected")


@socketio.on('compile')
def handle_compile(data):
    try:
        emit('compiled', compile_payload(data))
    except ValueError as e:
        emit('compiled', {"ok": False, "error": str(e)})


@socketio.on('request_logs')
def handle_request_logs():
    logs = []
    while not log_queue.empty() and len(logs) < 100:
        logs.append(log_queue.get())
    emit('log_history', logs)


if __name__ == "__main__":
    socketio.run(app, host=settings.host, port=settings.port, debug=settings.debug)
