"""Training loop with optional distributed checkpointing.

Checkpoint versions count half-rounds: an even version means the next
round's update has not been applied, an odd one that only its evaluation is
left. A worker restarted by the distributed coordinator resumes from the
version stored in its checkpoint.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from nativeboost.booster import Booster
from nativeboost.gateway import Gateway
from nativeboost.types import DataMatrix, Evaluator, Objective, Params

logger = logging.getLogger(__name__)


def train(
    params: Params | None,
    dtrain: DataMatrix,
    num_boost_round: int = 10,
    evals: Sequence[tuple[DataMatrix, str]] = (),
    obj: Objective | None = None,
    feval: Evaluator | None = None,
    *,
    checkpoint: bool = False,
    gateway: Gateway | None = None,
) -> Booster:
    """Train a booster for ``num_boost_round`` rounds.

    Args:
        params: Booster parameters.
        dtrain: Training data.
        num_boost_round: Number of boosting rounds.
        evals: ``(dataset, name)`` pairs evaluated after every round.
        obj: Custom objective; the native objective is used when None.
        feval: Custom evaluation metric; native metrics are used when None.
        checkpoint: Resume from and save to the distributed checkpoint.
        gateway: Native call surface for the booster.

    Returns:
        The trained booster. The caller owns it and should dispose it.
    """
    if num_boost_round < 0:
        raise ValueError(f"num_boost_round must be non-negative, got {num_boost_round}")

    eval_data = [d for d, _ in evals]
    eval_names = [name for _, name in evals]
    booster = Booster(params, [dtrain, *eval_data], gateway=gateway)
    try:
        version = booster.load_rabit_checkpoint() if checkpoint else 0
        if version:
            logger.info("Resuming training from checkpoint version %d", version)

        for i in range(version // 2, num_boost_round):
            if version % 2 == 0:
                booster.update(dtrain, i, fobj=obj)
                if checkpoint:
                    booster.save_rabit_checkpoint()
                version += 1

            if evals:
                logger.info("[%d]%s", i, booster.eval_set(eval_data, eval_names, i, feval))

            if checkpoint:
                booster.save_rabit_checkpoint()
            version += 1
    except BaseException:
        booster.dispose()
        raise
    return booster


__all__: list[str] = [
    "train",
]
