import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ..storage.database import DatabaseManager
from ..storage.models import Ruleset, Target

logger = logging.getLogger(__name__)

class RulesetIndex:
    
    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self._targets: Dict[str, List[int]] = {}
        self._reload_count = 0
    
    @property
    def target_count(self) -> int:
        return len(self._targets)
    
    def reload(self):
        targets: Dict[str, List[int]] = defaultdict(list)
        
        with self.db_manager.engine.connect() as conn:
            rows = conn.execute(select(Target.host, Target.ruleset_id))
            for host, ruleset_id in rows:
                targets[host.lower()].append(ruleset_id)
        
        # Readers keep whichever mapping they already hold
        self._targets = dict(targets)
        self._reload_count += 1
        
        logger.info(f"Loaded {len(self._targets)} ruleset targets")
    
    def rulesets_for_host(self, host: str) -> List[int]:
        host = host.lower().rstrip(".")
        targets = self._targets
        found: List[int] = []
        
        for candidate in self._candidate_patterns(host):
            for ruleset_id in targets.get(candidate, []):
                if ruleset_id not in found:
                    found.append(ruleset_id)
        
        return found
    
    @staticmethod
    def _candidate_patterns(host: str) -> List[str]:
        candidates = [host]
        labels = host.split(".")
        
        # *.example.com, *.com
        for i in range(1, len(labels)):
            candidates.append("*." + ".".join(labels[i:]))
        
        # www.example.*
        if len(labels) > 1:
            candidates.append(".".join(labels[:-1]) + ".*")
        
        return candidates
    
    def get_ruleset(self, ruleset_id: int) -> Optional[Dict[str, Any]]:
        with self.db_manager.get_sync_session() as session:
            ruleset = session.get(Ruleset, ruleset_id)
            return ruleset.to_dict() if ruleset else None
    
    def stats(self) -> Dict[str, Any]:
        return {
            "targets": self.target_count,
            "rulesets": len({rid for ids in self._targets.values() for rid in ids}),
            "reloads": self._reload_count,
        }
