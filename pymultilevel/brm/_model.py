"""
Translation of a validated design into a PyMC model.

The linear predictor is

    η = X β + Σ_g (r_g[level] ∘ Z_g) 1

with group-level effects in non-centered form. For a grouping factor with
q varying coefficients and J levels:

    z_g ~ Normal(0, 1)                    (J, q)
    r_g = (z_g Lᵀ) ∘ sd_g                 (J, q)

where L is the Cholesky factor of the coefficient correlation matrix
(identity for uncorrelated terms) and sd_g holds one standard deviation
per coefficient. Each coefficient, standard deviation and family
parameter is its own named random variable so that priors can be set per
parameter.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np
import pymc as pm
import pytensor.tensor as pt
from pytensor.tensor.slinalg import cholesky

from pymultilevel.brm.design import BrmDesign, GroupBlock
from pymultilevel.brm.priors import ResolvedPrior
from pymultilevel.core.exceptions import InvalidSpecification

logger = logging.getLogger(__name__)

#: Name of the observed response variable in the PyMC model
OBSERVED = 'y'


def build_model(
    design: BrmDesign,
    family: Any,
    priors: Sequence[ResolvedPrior],
) -> tuple[pm.Model, list[str]]:
    """Build the PyMC model of a brm() fit.

    Args:
        design: Validated design.
        family: Resolved Family.
        priors: One resolved prior per parameter slot.

    Returns:
        (model, parameter names reported in the summary, in model order)
    """
    by_name = {r.parameter: r for r in priors}
    coords: dict[str, Any] = {}
    for block in design.blocks:
        coords[f"{block.group}_level"] = list(block.levels)
        coords[f"{block.group}_coef"] = list(block.coefs)

    reported: list[str] = []
    aux: dict[str, Any] = {}

    with pm.Model(coords=coords) as model:
        if family.ordinal:
            aux['thresholds'] = _thresholds(design, by_name, reported)

        b = []
        for coef in design.coef_names:
            name = f"b_{coef}"
            b.append(by_name[name].create(name))
            reported.append(name)
        if b:
            eta = pt.dot(design.X, pt.stack(b))
        else:
            eta = pt.zeros(design.n)

        if design.cs_names:
            aux['eta_cs'] = _category_specific(design, by_name, reported)

        for block in design.blocks:
            r = _group_effects(block, by_name, reported)
            eta = eta + (r[block.index] * block.Z).sum(axis=1)

        for dpar in family.dpars:
            if dpar.name in by_name:
                aux[dpar.name] = by_name[dpar.name].create(dpar.name)
                reported.append(dpar.name)

        family.observe(OBSERVED, eta, aux, design)

    logger.debug("built model with %d free variables", len(model.free_RVs))
    return model, reported


def _thresholds(design: BrmDesign, by_name: dict[str, ResolvedPrior], reported: list[str]):
    k = design.n_cat - 1
    reported.append('b_Intercept')
    if design.spec.threshold == 'equidistant':
        first = by_name['b_Intercept'].create('Intercept_first')
        delta = by_name['delta'].create('delta')
        reported.append('delta')
        return pm.Deterministic('b_Intercept', first + delta * np.arange(k))

    return by_name['b_Intercept'].create(
        'b_Intercept',
        shape=k,
        transform=pm.distributions.transforms.ordered,
        initval=np.linspace(-1.0, 1.0, k),
    )


def _category_specific(design: BrmDesign, by_name: dict[str, ResolvedPrior], reported: list[str]):
    k = design.n_cat - 1
    eta_cs = pt.zeros((design.n, k))
    for j, coef in enumerate(design.cs_names):
        name = f"bcs_{coef}"
        bcs = by_name[name].create(name, shape=k)
        reported.append(name)
        eta_cs = eta_cs + design.X_cs[:, j, None] * bcs[None, :]
    return eta_cs


def _group_effects(block: GroupBlock, by_name: dict[str, ResolvedPrior], reported: list[str]):
    g = block.group
    dims = (f"{g}_level", f"{g}_coef")

    sds = []
    for coef in block.coefs:
        name = f"sd_{g}_{coef}"
        sds.append(by_name[name].create(name))
        reported.append(name)
    sd = pt.stack(sds)

    z = pm.Normal(f"z_{g}", 0.0, 1.0, dims=dims)

    if block.correlated:
        lkj = by_name[f"cor_{g}"]
        if lkj.parsed is None or lkj.parsed.name != 'lkj':
            raise InvalidSpecification(
                f"Correlation prior for '{g}' must be lkj(eta), got {lkj.prior!r}",
                field='priors', value=lkj.prior,
            )
        q = block.n_coefs
        corr = pm.LKJCorr(f"corr_{g}", n=q, eta=lkj.parsed.args[0])
        if corr.ndim == 1:
            # Packed upper triangle, row-major
            rows, cols = np.triu_indices(q, k=1)
            C = pt.eye(q)
            C = pt.set_subtensor(C[rows, cols], corr)
            C = pt.set_subtensor(C[cols, rows], corr)
        else:
            C = corr
        L = cholesky(C)
        r = pt.dot(z, L.T) * sd
        for i in range(q):
            for j in range(i + 1, q):
                name = f"cor_{g}_{block.coefs[i]}_{block.coefs[j]}"
                pm.Deterministic(name, C[i, j])
                reported.append(name)
    else:
        r = z * sd

    return pm.Deterministic(f"r_{g}", r, dims=dims)
