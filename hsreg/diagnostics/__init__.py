from .convergence import (
    ConvergenceError,
    ConvergenceReport,
    DiagnosticThresholds,
    assess_convergence,
    summarize_convergence,
)
