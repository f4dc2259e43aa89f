"""
Icicle plot and cluster membership derived from an agglomeration schedule.

Both replay the schedule (a union-find style relabelling of case ids)
rather than walking the dendrogram, so they can be produced even when no
tree was built.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from clustermath.errors import ConfigurationError
from clustermath.math.agglomeration import AgglomerationSchedule
from clustermath.math.options import DisplayWindow, MembershipRequest

logger = logging.getLogger(__name__)


@dataclass
class IcicleCase:
    """
    Cluster-count range over which a case belongs to a multi-member cluster.

    Cases never in a multi-member cluster carry min_k == max_k == n.
    """

    index: int
    label: str
    min_k: int
    max_k: int

    def to_dict(self) -> Dict[str, Any]:
        return {'index': self.index, 'label': self.label, 'min_k': self.min_k, 'max_k': self.max_k}


@dataclass
class IciclePlot:
    """
    Per-case k ranges plus the displayed cluster solutions.

    Attributes:
        n: Number of cases
        ks: Displayed cluster counts, ascending
        cases: One IcicleCase per case, in case order
        levels: k -> cluster label (1..k) per case
        joined: k -> whether each case is in a multi-member cluster
        case_order: Case indices in display order
    """

    n: int
    ks: List[int]
    cases: List[IcicleCase]
    levels: Dict[int, List[int]] = field(default_factory=dict)
    joined: Dict[int, List[bool]] = field(default_factory=dict)
    case_order: List[int] = field(default_factory=list)

    def in_multi_member_cluster(self, k: int, case: int) -> bool:
        """
        Whether a case shares its cluster with another case at k clusters.

        Args:
            k: Cluster count (1..n)
            case: Case index
        """
        entry = self.cases[case]
        if entry.min_k == entry.max_k == self.n:
            return False
        return entry.min_k <= k <= entry.max_k

    def to_dict(self) -> Dict[str, Any]:
        return {
            'n': self.n,
            'ks': list(self.ks),
            'case_order': list(self.case_order),
            'cases': [c.to_dict() for c in self.cases],
            'levels': {str(k): v for k, v in self.levels.items()},
            'joined': {str(k): v for k, v in self.joined.items()}
        }


def _number_clusters(owner: Sequence[int]) -> List[int]:
    numbering: Dict[int, int] = {}
    labels = []
    for cluster_id in owner:
        if cluster_id not in numbering:
            numbering[cluster_id] = len(numbering) + 1
        labels.append(numbering[cluster_id])
    return labels


class IciclePlotBuilder:
    """
    Builds an IciclePlot by replaying a schedule one stage at a time.
    """

    def __init__(self,
                 window: Optional[DisplayWindow] = None,
                 labels: Optional[Sequence[str]] = None,
                 case_order: Optional[Sequence[int]] = None):
        """
        Args:
            window: Which cluster counts to expose (all by default)
            labels: Optional case labels
            case_order: Optional display order of cases (e.g. dendrogram leaf order)
        """
        self.window = window or DisplayWindow()
        self.labels = list(labels) if labels is not None else None
        self.case_order = list(case_order) if case_order is not None else None

    def build(self, schedule: AgglomerationSchedule) -> IciclePlot:
        """
        Args:
            schedule: A complete agglomeration schedule

        Returns:
            IciclePlot
        """
        n = schedule.n_items
        if n < 1:
            raise ConfigurationError("empty dataset")
        if not schedule.complete:
            raise ConfigurationError(f"incomplete schedule: {len(schedule)} stages for {n} cases")

        shown = set(self.window.ks(n))
        labels = self.labels or [str(i + 1) for i in range(n)]
        min_k = [n] * n
        max_k = [0] * n
        levels: Dict[int, List[int]] = {}
        joined: Dict[int, List[bool]] = {}

        owner = list(range(n))
        members: Dict[int, List[int]] = {i: [i] for i in range(n)}

        # after s replayed stages there are n - s clusters
        for s in range(n):
            k = n - s
            multi = [len(members[owner[c]]) > 1 for c in range(n)]
            for c in range(n):
                if multi[c]:
                    min_k[c] = min(min_k[c], k)
                    max_k[c] = max(max_k[c], k)
            if k in shown:
                levels[k] = _number_clusters(owner)
                joined[k] = multi

            if s < n - 1:
                stage = schedule[s]
                moved = members.pop(stage.cluster2)
                for item in moved:
                    owner[item] = stage.cluster1
                members[stage.cluster1].extend(moved)

        cases = []
        for c in range(n):
            if max_k[c] == 0:
                cases.append(IcicleCase(c, labels[c], n, n))
            else:
                cases.append(IcicleCase(c, labels[c], min_k[c], max_k[c]))

        order = self.case_order if self.case_order is not None else list(range(n))
        logger.debug(f"Built icicle plot for {n} cases, {len(levels)} levels shown")
        return IciclePlot(n, sorted(shown), cases, levels, joined, order)


def cluster_membership(schedule: AgglomerationSchedule,
                       request: MembershipRequest) -> Dict[int, List[int]]:
    """
    Cluster labels per case for each requested solution.

    Args:
        schedule: A complete agglomeration schedule
        request: Single solution or range of solutions

    Returns:
        k -> label (1..k) per case
    """
    return {k: schedule.cut(k) for k in request.ks(schedule.n_items)}
