"""Registry of agent definitions referenced by workflow steps."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Union

import yaml

from ..errors import AgentNotFound, WorkflowDefinitionError
from ..models.agent import AgentDefinition

logger = logging.getLogger(__name__)

AGENT_FILE_SUFFIXES = (".yaml", ".yml", ".json")


class AgentCatalog:
    def __init__(self, definitions: Iterable[AgentDefinition] = ()) -> None:
        self._agents: Dict[str, AgentDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: AgentDefinition) -> None:
        if definition.id in self._agents:
            logger.warning("Replacing agent definition %s", definition.id)
        self._agents[definition.id] = definition

    def get(self, agent_id: str) -> AgentDefinition:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise AgentNotFound(agent_id) from None

    def has(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def list_agents(self) -> List[AgentDefinition]:
        return [self._agents[agent_id] for agent_id in sorted(self._agents)]

    def load_file(self, path: Union[str, Path]) -> List[AgentDefinition]:
        """Load one file holding an agent mapping, a list of them, or ``agents: [...]``."""
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        try:
            data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise WorkflowDefinitionError(f"Failed to parse agent file {path}: {e}")

        if isinstance(data, dict) and "agents" in data:
            data = data["agents"]
        entries = data if isinstance(data, list) else [data]

        loaded = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise WorkflowDefinitionError(f"Agent entries in {path} must be mappings")
            try:
                definition = AgentDefinition.from_dict(entry)
            except ValueError as e:
                raise WorkflowDefinitionError(f"Invalid agent definition in {path}: {e}")
            self.register(definition)
            loaded.append(definition)
        return loaded

    def load_directory(self, directory: Union[str, Path]) -> List[AgentDefinition]:
        loaded: List[AgentDefinition] = []
        for path in sorted(Path(directory).iterdir()):
            if path.is_file() and path.suffix.lower() in AGENT_FILE_SUFFIXES:
                loaded.extend(self.load_file(path))
        logger.info("Loaded %d agent definition(s) from %s", len(loaded), directory)
        return loaded

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents
