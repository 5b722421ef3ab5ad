from typing import List, Dict, Any, Optional
import datetime
import json
from pathlib import Path

from ..types import CallGraphNode
from ..utils.logger import app_logger


class JsonGraphClient:
    """JSON-based storage for the call graph, kept for inspection and debugging."""

    def __init__(self, storage_path: str = "graph_data.json"):
        self.logger = app_logger.bind(component="json_graph_client")
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self.data = self._initialize_data()

        # Load existing data if file exists
        self._load_data()

    def _load_data(self):
        """Load data from JSON file."""
        if not self.storage_path.exists():
            return
        try:
            with open(self.storage_path, 'r', encoding='utf-8') as f:
                self.data = json.load(f)
            self.logger.info(f"Loaded graph data from {self.storage_path}")
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Error loading graph data: {e}")
            self.data = self._initialize_data()

    def _initialize_data(self) -> Dict[str, Any]:
        """Initialize empty data structure."""
        return {
            "nodes": {},
            "metadata": {
                "version": "1.0",
                "created_at": None,
                "updated_at": None,
                "repo_path": None,
            }
        }

    def _save_data(self):
        """Save data to JSON file."""
        self.data["metadata"]["updated_at"] = datetime.datetime.now().isoformat()
        if not self.data["metadata"]["created_at"]:
            self.data["metadata"]["created_at"] = self.data["metadata"]["updated_at"]

        with open(self.storage_path, 'w', encoding='utf-8') as f:
            json.dump(self.data, f, indent=2, ensure_ascii=False)
        self.logger.debug(f"Saved graph data to {self.storage_path}")

    def save_call_graph(self, graph: Dict[str, CallGraphNode], repo_path: Optional[str] = None):
        """Replace the stored graph with ``graph``."""
        self.data["nodes"] = {node_id: node.to_dict() for node_id, node in sorted(graph.items())}
        self.data["metadata"]["repo_path"] = repo_path
        self._save_data()
        self.logger.info(f"Saved call graph with {len(graph)} nodes to {self.storage_path}")

    def load_call_graph(self) -> Dict[str, CallGraphNode]:
        """Rebuild the node arena from storage."""
        return {
            node_id: CallGraphNode.from_dict(node_data)
            for node_id, node_data in self.data["nodes"].items()
        }

    def get_node(self, node_id: str) -> Optional[CallGraphNode]:
        node_data = self.data["nodes"].get(node_id)
        if node_data is None:
            return None
        return CallGraphNode.from_dict(node_data)

    def find_callees(self, node_id: str) -> List[CallGraphNode]:
        """Functions called by ``node_id``."""
        node = self.get_node(node_id)
        if node is None:
            return []
        return [callee for callee in (self.get_node(i) for i in node.calls) if callee is not None]

    def find_callers(self, node_id: str) -> List[CallGraphNode]:
        """Functions calling ``node_id``."""
        node = self.get_node(node_id)
        if node is None:
            return []
        return [caller for caller in (self.get_node(i) for i in node.called_by) if caller is not None]

    def find_functions_by_name(self, name: str) -> List[CallGraphNode]:
        """All nodes whose short name is ``name``, ordered by id."""
        return [
            CallGraphNode.from_dict(node_data)
            for node_id, node_data in sorted(self.data["nodes"].items())
            if node_id.rsplit("::", 1)[-1] == name
        ]

    def get_file_structure(self, file_path: str) -> List[CallGraphNode]:
        """Nodes defined in ``file_path``."""
        prefix = f"{file_path}::"
        return [
            CallGraphNode.from_dict(node_data)
            for node_id, node_data in sorted(self.data["nodes"].items())
            if node_id.startswith(prefix)
        ]

    def clear_database(self):
        """Clear all data from the database."""
        self.data = self._initialize_data()
        self._save_data()
        self.logger.info("Cleared all data from JSON graph database")

    def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        nodes = self.data["nodes"].values()
        files = {node_id.rsplit("::", 1)[0] for node_id in self.data["nodes"]}
        return {
            "nodes": len(self.data["nodes"]),
            "edges": sum(len(node["calls"]) for node in nodes),
            "files": len(files),
            "isolated_nodes": sum(1 for node in nodes if not node["calls"] and not node["called_by"]),
        }

    def get_graph_data(self) -> Dict[str, Any]:
        """Get the complete graph data for visualization."""
        edges = [
            {"source_id": node_id, "target_id": target, "relationship_type": "CALLS"}
            for node_id, node_data in sorted(self.data["nodes"].items())
            for target in node_data["calls"]
        ]
        return {
            "nodes": list(self.data["nodes"].values()),
            "edges": edges,
            "metadata": self.data["metadata"],
        }
