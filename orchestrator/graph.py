from collections import OrderedDict
from typing import Dict, List, Sequence, Set

from orchestrator.errors import CyclicDependencyError, UnknownReferenceError
from orchestrator.plan import DeploymentStep


def _dependency_map(steps: Sequence[DeploymentStep]) -> Dict[str, Set[str]]:
    known = {step.id for step in steps}
    dependencies = OrderedDict()
    for step in steps:
        step_dependencies = set(step.depends_on) | step.references()
        for dependency in sorted(step_dependencies):
            if dependency not in known:
                raise UnknownReferenceError(step.id, dependency)
        dependencies[step.id] = step_dependencies
    return dependencies


def _find_cycle(remaining: List[str], dependencies: Dict[str, Set[str]]) -> List[str]:
    """
    Walks unplaced steps until one repeats. Every unplaced step has an unplaced
    dependency, so the walk always closes a cycle.
    """
    path = [remaining[0]]
    while True:
        current = path[-1]
        following = next(step_id for step_id in remaining if step_id in dependencies[current])
        if following in path:
            return path[path.index(following):] + [following]
        path.append(following)


def deployment_order(steps: Sequence[DeploymentStep]) -> List[str]:
    """
    Returns step ids ordered so that every step comes after all of its dependencies.
    Among steps that are ready at the same time, the one declared first wins, so the
    order is stable across runs.
    """
    dependencies = _dependency_map(steps)
    declared = list(dependencies)

    order = list()
    placed = set()
    while len(order) < len(declared):
        for step_id in declared:
            if step_id not in placed and dependencies[step_id] <= placed:
                order.append(step_id)
                placed.add(step_id)
                break
        else:
            remaining = [step_id for step_id in declared if step_id not in placed]
            raise CyclicDependencyError(_find_cycle(remaining, dependencies))

    return order
