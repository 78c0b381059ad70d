import json
import os


class LiteGraphGenerator:
    def __init__(self):
        self.node_id_counter = 1
        self.link_id_counter = 1
        self.nodes = []
        self.links = []

    def get_new_id(self):
        nid = self.node_id_counter
        self.node_id_counter += 1
        return nid

    def get_new_link_id(self):
        lid = self.link_id_counter
        self.link_id_counter += 1
        return lid

    def add_node(self, type_name, properties=None, inputs=None):
        nid = self.get_new_id()
        self.nodes.append({
            "id": nid,
            "type": type_name,
            "properties": properties or {},
        })
        for i, source_id in enumerate(inputs or []):
            self.links.append([self.get_new_link_id(), source_id, 0, nid, i, "tensor"])
        return nid

    def to_json(self, name):
        return {"name": name, "nodes": self.nodes, "links": self.links}


def generate_mnist_cnn():
    gen = LiteGraphGenerator()
    x = gen.add_node("Input", {"inputType": "image_grayscale", "height": 28, "width": 28})
    x = gen.add_node("Conv2D", {"filters": 32, "kernel_size": "(3, 3)", "padding": "same"}, inputs=[x])
    x = gen.add_node("MaxPool2D", {"pool_size": "(2, 2)"}, inputs=[x])
    x = gen.add_node("Conv2D", {"filters": 64, "kernel_size": "(3, 3)", "padding": "same"}, inputs=[x])
    x = gen.add_node("MaxPool2D", {"pool_size": "(2, 2)"}, inputs=[x])
    x = gen.add_node("Flatten", {}, inputs=[x])
    x = gen.add_node("Dense", {"units": 128, "activation": "relu"}, inputs=[x])
    x = gen.add_node("Dropout", {"rate": 0.5}, inputs=[x])
    gen.add_node("Output", {"outputType": "multiclass", "numClasses": 10}, inputs=[x])
    return gen.to_json("mnist_cnn")


def generate_two_tower():
    gen = LiteGraphGenerator()
    inp = gen.add_node("Input", {"inputType": "flat_data", "flatSize": 784})
    wide = gen.add_node("Dense", {"units": 128, "activation": "relu"}, inputs=[inp])
    narrow = gen.add_node("Dense", {"units": 64, "activation": "relu"}, inputs=[inp])
    merged = gen.add_node("Merge", {"mode": "concatenate", "axis": -1}, inputs=[wide, narrow])
    gen.add_node("Output", {"outputType": "multiclass", "numClasses": 10}, inputs=[merged])
    return gen.to_json("two_tower")


if __name__ == "__main__":
    here = os.path.dirname(os.path.abspath(__file__))
    for graph in (generate_mnist_cnn(), generate_two_tower()):
        path = os.path.join(here, f"{graph['name']}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(graph, f, indent=2)
        print(f"Generated {path}")
