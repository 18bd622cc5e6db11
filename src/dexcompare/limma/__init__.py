"""Linear-model engine: voom weights, weighted fits and moderated t-tests.

Functional API:
    >>> import dexcompare.limma as limma
    >>> v = limma.voom(counts, groups, norm)
    >>> model = limma.lm_fit(v)
    >>> results = model.e_bayes().top_table()

Accessor API:
    >>> import dexcompare.limma
    >>> res = counts.limma.moderated_test(groups)
"""

# Functional API exports
from .voom import voom, VoomResult
from .lm_fit import lm_fit, model_matrix, LimmaModel, EBayesFit
from .squeeze_var import squeeze_var, shrink_toward, fit_f_dist, trigamma_inverse
from .e_bayes import e_bayes
from .top_table import top_table

# Register Limma accessor on CountMatrix
from .accessor import activate, LimmaAccessor
activate()

__all__ = [
    # Functional API
    "voom",
    "lm_fit",
    "model_matrix",
    "squeeze_var",
    "shrink_toward",
    "fit_f_dist",
    "trigamma_inverse",
    "e_bayes",
    "top_table",
    # Model classes
    "VoomResult",
    "LimmaModel",
    "EBayesFit",
    # Accessor
    "LimmaAccessor",
]
