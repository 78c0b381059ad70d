import json
import os

from app import app, script_filename, socketio

EXAMPLE_DIR = os.path.join(os.path.dirname(__file__), "..", "example")


def load_example(name):
    with open(os.path.join(EXAMPLE_DIR, name), "r", encoding="utf-8") as f:
        return json.load(f)


def test_status_and_layers():
    client = app.test_client()
    assert client.get("/api/status").get_json()["ok"] is True

    layers = client.get("/api/layers").get_json()["layers"]
    assert "Dense" in {entry["type"] for entry in layers}


def test_compile_endpoint():
    client = app.test_client()
    response = client.post("/api/compile", json={"graph": load_example("two_tower.json")})
    assert response.status_code == 200

    data = response.get_json()
    assert data["ok"] is True
    assert data["shapes"]["4"] == "(192,)"
    assert data["code"].startswith("import tensorflow as tf")


def test_compile_endpoint_reports_graph_errors():
    client = app.test_client()
    response = client.post("/api/compile", json={"graph": {"nodes": [], "edges": []}})
    data = response.get_json()
    assert response.status_code == 200
    assert data["ok"] is False
    assert data["errors"] == [{"node_id": "graph", "message": "Network must have at least one layer"}]


def test_compile_endpoint_honours_input_shape():
    client = app.test_client()
    graph = {"nodes": [{"id": "in", "type": "Input"}, {"id": "f", "type": "Flatten"}],
             "edges": [{"source": "in", "target": "f"}]}
    data = client.post("/api/compile", json={"graph": graph, "input_shape": "(4, 4, 2)"}).get_json()
    assert data["shapes"]["f"] == "(32,)"


def test_non_finite_parameters_are_node_errors():
    client = app.test_client()
    graph = {"nodes": [{"id": "in", "type": "Input", "params": {"inputType": "image_grayscale"}},
                       {"id": "c", "type": "Conv2D", "params": {"kernel_size": float("inf")}}],
             "edges": [{"source": "in", "target": "c"}]}
    body = json.dumps({"graph": graph})
    assert "Infinity" in body

    response = client.post("/api/compile", data=body, content_type="application/json")
    assert response.status_code == 200
    data = response.get_json()
    assert data["ok"] is False
    assert data["errors"] == [{"node_id": "c", "message": "Conv2D: Expected positive integers, got inf"}]


def test_bad_payloads_are_400():
    client = app.test_client()
    assert client.post("/api/compile", json={"graph": {"nodes": "x"}}).status_code == 400
    assert client.post("/api/compile", json=[1, 2]).status_code == 400
    assert client.post("/api/compile", json={"nodes": [{"id": 1}], "edges": []}).status_code == 400
    assert client.post("/api/compile", json={"nodes": [], "edges": [], "style": "odd"}).status_code == 400


def test_generate_script_download():
    client = app.test_client()
    response = client.post("/api/generate_script",
                           json={"graph": load_example("mnist_cnn.json"), "filename": "mnist_cnn.json"})
    assert response.status_code == 200
    assert 'filename="mnist_cnn.py"' in response.headers["Content-Disposition"]
    body = response.get_data(as_text=True)
    assert body.startswith("import tensorflow as tf")
    compile(body, "mnist_cnn.py", "exec")


def test_generate_script_rejects_invalid_graph():
    client = app.test_client()
    response = client.post("/api/generate_script", json={"graph": {"nodes": [], "edges": []}})
    assert response.status_code == 400
    assert response.get_json()["ok"] is False


def test_script_filename():
    assert script_filename("my graph.json") == "my graph.py"
    assert script_filename("../../etc/passwd") == "passwd.py"
    assert script_filename(None) == "model.py"
    assert script_filename("???.json") == "model.py"


def test_socket_compile_and_logs():
    client = socketio.test_client(app)
    client.emit("compile", {"graph": load_example("two_tower.json")})
    received = [message for message in client.get_received() if message["name"] == "compiled"]
    assert received[0]["args"][0]["ok"] is True

    client.emit("request_logs")
    history = [message for message in client.get_received() if message["name"] == "log_history"]
    assert len(history) == 1
    client.disconnect()
