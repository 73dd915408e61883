"""
Command line runner for the reference algorithms.

Solves a distributed least-squares problem with asynchronous SGD or
asynchronous gradient averaging and prints a summary.

Usage:
    distiter-train --algorithm sgd --workers 4 --iterations 500
    distiter-train --algorithm averaging --workers 3 --epochs 50 --history history.json
    distiter-train --config run.json --time 5
"""

import argparse
import json
import logging
from typing import Optional

import torch

from distiter.algorithms.averaging import GradientAveraging
from distiter.algorithms.problems import distributed_least_squares, ground_truth, least_squares_factory
from distiter.algorithms.sgd import AsyncSGD
from distiter.coordinator.runner import run
from distiter.core.algorithm import AggregationAlgorithm
from distiter.core.config import RunConfig
from distiter.core.errors import EngineError
from distiter.core.problem import COORDINATOR_ID
from distiter.core.stopping import StoppingCriteria

logger = logging.getLogger(__name__)


def train(
    algorithm_name: str = "sgd",
    num_workers: int = 2,
    iterations: Optional[int] = 200,
    time_limit: Optional[float] = None,
    epochs: Optional[int] = None,
    precision: Optional[float] = None,
    stepsize: float = 0.05,
    batch_size: Optional[int] = 16,
    num_samples: int = 100,
    dim: int = 10,
    seed: int = 42,
    config: Optional[RunConfig] = None
) -> dict:
    """
    Run one reference algorithm.

    Args:
        algorithm_name: 'sgd' or 'averaging'
        num_workers: Number of workers
        iterations: Iteration bound (None for no bound)
        time_limit: Wall-time bound in seconds
        epochs: Epoch bound
        precision: Stop once consecutive iterates are this close
        stepsize: Gradient step
        batch_size: Mini-batch size for SGD (ignored by averaging)
        num_samples: Rows per worker shard
        dim: Number of unknowns
        seed: Problem seed
        config: Engine configuration

    Returns:
        Dictionary of run results
    """
    config = config or RunConfig()

    if algorithm_name == "sgd":
        algorithm = AsyncSGD(stepsize=stepsize, batch_size=batch_size)
    elif algorithm_name == "averaging":
        algorithm = AggregationAlgorithm(GradientAveraging(stepsize=stepsize))
    else:
        raise ValueError(f"Unknown algorithm: {algorithm_name}")

    stopping = StoppingCriteria(
        iterations=iterations,
        time=time_limit,
        epochs=epochs,
        precision=precision
    )
    shard_factory = least_squares_factory(num_workers, num_samples=num_samples, dim=dim, seed=seed)

    print(f"\n{'='*60}")
    print("Asynchronous Least Squares")
    print(f"{'='*60}")
    print(f"Algorithm: {algorithm_name}")
    print(f"Workers: {num_workers} ({config.backend})")
    print(f"Problem: {num_workers * num_samples} x {dim}")
    print(f"Stepsize: {stepsize}")
    print(f"Stopping: iterations={iterations}, time={time_limit}, "
          f"epochs={epochs}, precision={precision}")
    print(f"{'='*60}\n")

    history = run(algorithm, shard_factory, stopping, workers=num_workers, config=config)

    full_problem = distributed_least_squares(
        COORDINATOR_ID, num_workers=num_workers, num_samples=num_samples, dim=dim, seed=seed
    )
    x = history.final_query
    final_loss = full_problem.loss(x)
    initial_loss = full_problem.loss(history.initial_query)
    error = torch.dist(x, ground_truth(dim, seed)).item()

    print(f"\n{'='*60}")
    print("Run Complete!")
    print(f"{'='*60}")
    print(f"Stop reason: {history.stop_reason.value}")
    print(f"Iterations: {len(history)}")
    print(f"Epochs: {history.epochs}")
    print(f"Total time: {history.elapsed:.2f}s")
    if history.elapsed > 0:
        print(f"Iterations/sec: {len(history) / history.elapsed:.2f}")
    print(f"Initial loss: {initial_loss:.6f}")
    print(f"Final loss: {final_loss:.6f}")
    print(f"Distance to solution: {error:.6f}")
    print("Answers per worker:")
    for worker_id, count in history.answer_count.items():
        print(f"  Worker {worker_id}: {count}")
    print(f"\n{'='*60}\n")

    return {
        'history': history,
        'initial_loss': initial_loss,
        'final_loss': final_loss,
        'distance_to_solution': error,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description="Asynchronous distributed least squares")

    parser.add_argument(
        '--algorithm',
        type=str,
        default='sgd',
        choices=['sgd', 'averaging'],
        help='Algorithm to run'
    )
    parser.add_argument('--workers', type=int, default=2, help='Number of workers')
    parser.add_argument('--iterations', type=int, default=None, help='Iteration bound')
    parser.add_argument('--time', type=float, default=None, help='Wall-time bound in seconds')
    parser.add_argument('--epochs', type=int, default=None, help='Epoch bound')
    parser.add_argument('--precision', type=float, default=None, help='Precision bound')
    parser.add_argument('--stepsize', type=float, default=0.05, help='Gradient step')
    parser.add_argument('--batch-size', type=int, default=16, help='SGD mini-batch size')
    parser.add_argument('--samples', type=int, default=100, help='Rows per worker shard')
    parser.add_argument('--dim', type=int, default=10, help='Number of unknowns')
    parser.add_argument('--seed', type=int, default=42, help='Problem seed')
    parser.add_argument(
        '--backend',
        type=str,
        default=None,
        choices=['process', 'thread'],
        help='Worker execution contexts (overrides --config)'
    )
    parser.add_argument('--config', type=str, default=None, help='RunConfig JSON file')
    parser.add_argument('--log-every', type=int, default=None, help='Progress line every N iterations')
    parser.add_argument('--history', type=str, default=None, help='Write the History as JSON')

    args = parser.parse_args(argv)

    config = RunConfig.from_json_file(args.config) if args.config else RunConfig(log_every=100)
    if args.backend:
        config.backend = args.backend
    if args.log_every is not None:
        config.log_every = args.log_every

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    iterations = args.iterations
    if iterations is None and args.time is None and args.epochs is None and args.precision is None:
        iterations = 200

    try:
        results = train(
            algorithm_name=args.algorithm,
            num_workers=args.workers,
            iterations=iterations,
            time_limit=args.time,
            epochs=args.epochs,
            precision=args.precision,
            stepsize=args.stepsize,
            batch_size=args.batch_size,
            num_samples=args.samples,
            dim=args.dim,
            seed=args.seed,
            config=config
        )
    except EngineError as e:
        logger.error(f"Run failed: {e}")
        if e.history is not None:
            logger.error(f"Partial history: {len(e.history)} iterations")
        return 1

    if args.history:
        with open(args.history, 'w') as f:
            json.dump(results['history'].to_dict(), f, indent=2)
        print(f"History written to {args.history}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
