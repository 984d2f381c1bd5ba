"""Genetic algorithm over job orders.

A chromosome is a permutation of job ids, decoded into a Solution State by
the constructive heuristic (``construct(order=...)``). Variation uses order
crossover (OX) and swap mutation; parents come from tournament selection
and the best individuals survive unchanged (elitism).
"""

from __future__ import annotations

import logging
import random
import time
from typing import Optional

from cspcj.algorithms.base import (
    Budget,
    RunStatus,
    SolveResult,
    Strategy,
    make_rng,
    open_trace,
)
from cspcj.algorithms.constructive import construct, order_jobs
from cspcj.config import OrderingPolicy, StrategyConfig
from cspcj.errors import Infeasible
from cspcj.models import ConflictGraphModel, JobId
from cspcj.registry import register
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.search")

Chromosome = tuple[JobId, ...]

TOURNAMENT_SIZE = 3
ELITE = 2


def order_crossover(
    first: Chromosome, second: Chromosome, rng: random.Random
) -> Chromosome:
    """OX: copy a random slice of ``first``, fill the rest in ``second``'s order."""
    n = len(first)
    if n < 2:
        return tuple(first)
    i, j = sorted(rng.sample(range(n), 2))
    child: list[Optional[JobId]] = [None] * n
    child[i : j + 1] = first[i : j + 1]
    kept = set(first[i : j + 1])
    fill = iter(g for g in second if g not in kept)
    for pos in range(n):
        if child[pos] is None:
            child[pos] = next(fill)
    return tuple(child)  # type: ignore[arg-type]


def swap_mutation(chromosome: Chromosome, rng: random.Random) -> Chromosome:
    n = len(chromosome)
    if n < 2:
        return chromosome
    genes = list(chromosome)
    i, j = rng.sample(range(n), 2)
    genes[i], genes[j] = genes[j], genes[i]
    return tuple(genes)


class GeneticAlgorithm(Strategy):
    """Permutation GA with a greedy decoder."""

    name = "genetic"
    default_ordering = OrderingPolicy.DEMAND_DESC

    def __init__(self, config: Optional[StrategyConfig] = None) -> None:
        super().__init__(config)
        self._cache: dict[Chromosome, Optional[SolutionState]] = {}
        self._failure: Optional[Infeasible] = None

    def _decode(self, model: ConflictGraphModel, chromosome: Chromosome) -> Optional[SolutionState]:
        if chromosome in self._cache:
            return self._cache[chromosome]
        try:
            state: Optional[SolutionState] = construct(
                model,
                slot_rule=self.config.slot_rule,
                cost=self.config.cost,
                allow_reassign=self.config.allow_reassign,
                order=chromosome,
            )
        except Infeasible as exc:
            self._failure = exc
            state = None
        self._cache[chromosome] = state
        return state

    def _fitness(self, model: ConflictGraphModel, chromosome: Chromosome) -> tuple:
        state = self._decode(model, chromosome)
        if state is None:
            return (1, float("inf"), 0, 0)
        return (0, *state.rank_key())

    def _tournament(
        self, population: list[Chromosome], scores: dict[Chromosome, tuple], rng: random.Random
    ) -> Chromosome:
        contenders = rng.sample(population, min(TOURNAMENT_SIZE, len(population)))
        return min(contenders, key=lambda c: scores[c])

    def _initial_population(
        self, model: ConflictGraphModel, rng: random.Random
    ) -> list[Chromosome]:
        size = max(2, self.config.population_size)
        population = [tuple(order_jobs(model, self.ordering, rng))]
        population.append(tuple(order_jobs(model, OrderingPolicy.DEGREE_DESC, rng)))
        while len(population) < size:
            if len(population) % 2:
                policy = OrderingPolicy.DEMAND_DESC_RANDOM_TIES
            else:
                policy = OrderingPolicy.RANDOM
            population.append(tuple(order_jobs(model, policy, rng)))
        return population

    def solve(self, model: ConflictGraphModel) -> SolveResult:
        cfg = self.config
        t0 = time.perf_counter()
        rng, seed = make_rng(cfg.seed)
        budget = Budget.from_config(cfg)
        self._cache.clear()
        self._failure = None

        population = self._initial_population(model, rng)
        scores = {c: self._fitness(model, c) for c in population}
        best = min(population, key=lambda c: scores[c])
        history: list[float] = []
        if scores[best][0] == 0:
            history.append(scores[best][1])
        status = RunStatus.CONVERGED
        generation = 0
        stale = 0

        with open_trace(cfg.trace_file, "generation;best;mean") as trace:
            while generation < cfg.generations:
                if budget.exhausted(generation):
                    status = RunStatus.BUDGET_EXHAUSTED
                    break
                if stale >= cfg.max_no_improve:
                    break
                generation += 1
                ranked = sorted(population, key=lambda c: scores[c])
                offspring = ranked[:ELITE]
                while len(offspring) < len(population):
                    mother = self._tournament(population, scores, rng)
                    father = self._tournament(population, scores, rng)
                    child = order_crossover(mother, father, rng)
                    if rng.random() < cfg.mutation_rate:
                        child = swap_mutation(child, rng)
                    if child not in scores:
                        scores[child] = self._fitness(model, child)
                    offspring.append(child)
                population = offspring
                leader = min(population, key=lambda c: scores[c])
                if scores[leader] < scores[best]:
                    if scores[leader][:2] < scores[best][:2]:
                        stale = 0
                        history.append(scores[leader][1])
                    else:
                        stale += 1
                    best = leader
                else:
                    stale += 1
                feasible = [scores[c][1] for c in population if scores[c][0] == 0]
                mean = sum(feasible) / len(feasible) if feasible else float("nan")
                if trace is not None:
                    trace.write(f"{generation};{scores[best][1]};{mean:.4f}\n")
                logger.debug(
                    "[ga] generation %d best=%s mean=%.4f", generation, scores[best][1], mean
                )

        solution = self._decode(model, best)
        if solution is None:
            assert self._failure is not None
            raise self._failure
        return SolveResult(
            strategy=self.name,
            status=status,
            solution=solution,
            seed=seed,
            iterations=generation,
            elapsed_s=time.perf_counter() - t0,
            cost_history=history,
        )


@register("genetic")
def _genetic(config: StrategyConfig) -> Strategy:
    return GeneticAlgorithm(config)
