"""Graph history for rollback.

Every graph that is applied is stored by its graph id so an earlier
environment can be re-applied later. A rollback is an ordinary forward
apply of a stored graph; nothing is undone implicitly.

Layout: <root>/<environment>/graphs/<graph-id>.json
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from provision.graph import ResourceGraph

logger = logging.getLogger(__name__)

GRAPH_ID_RE = re.compile(r'[0-9a-f]{12}')


class GraphStore:
    """Stores applied graphs on disk, keyed by environment and graph id."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _graphs_dir(self, environment: str) -> Path:
        return self.root / environment / 'graphs'

    def path_for(self, environment: str, graph_id: str) -> Path:
        """Path of a stored graph.

        Raises:
            ValueError: If graph_id is not 12 lowercase hex characters
        """
        if not GRAPH_ID_RE.fullmatch(graph_id):
            raise ValueError(f"Invalid graph id '{graph_id}' (expected 12 hex characters)")
        return self._graphs_dir(environment) / f'{graph_id}.json'

    def save(self, graph: ResourceGraph, saved_at: Optional[datetime] = None) -> Path:
        """Store a graph. Saving the same graph twice refreshes its timestamp.

        Returns:
            Path of the stored graph
        """
        graph_id = graph.graph_id
        path = self.path_for(graph.environment, graph_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'graph_id': graph_id,
            'saved_at': (saved_at or datetime.now()).isoformat(timespec='seconds'),
            'graph': graph.to_dict(),
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Stored graph {graph_id} at {path}")
        return path

    def list(self, environment: str) -> list[dict]:
        """List stored graphs for an environment, newest first.

        Returns:
            Dicts with graph_id, saved_at and resources (count)
        """
        graphs_dir = self._graphs_dir(environment)
        if not graphs_dir.exists():
            return []

        entries = []
        for path in graphs_dir.glob('*.json'):
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
            entries.append({
                'graph_id': data.get('graph_id', path.stem),
                'saved_at': data.get('saved_at', ''),
                'resources': len(data.get('graph', {}).get('resources', [])),
            })
        return sorted(entries, key=lambda e: (e['saved_at'], e['graph_id']), reverse=True)

    def load(self, environment: str, graph_id: str) -> ResourceGraph:
        """Load a stored graph.

        Raises:
            FileNotFoundError: If no graph with that id is stored
            ValueError: If graph_id is malformed or the stored content no
                longer hashes to it
        """
        path = self.path_for(environment, graph_id)
        if not path.exists():
            raise FileNotFoundError(
                f"No stored graph '{graph_id}' for environment '{environment}'"
            )
        with open(path, encoding='utf-8') as f:
            data = json.load(f)

        graph = ResourceGraph.from_dict(data['graph'])
        if graph.graph_id != graph_id:
            raise ValueError(
                f"Stored graph {path} hashes to {graph.graph_id}, expected {graph_id}"
            )
        return graph
