import numpy as np
import pandas as pd

class ConvergenceTracker(object):
    """
    Keeps the per-iteration trace of a fit and applies the stopping rule
        loss_prev / loss - 1 < convergence_tol

    The rule is a relative improvement test. An increase of the loss makes
    the left side negative and therefore also stops the fit.

    Parameters
    ==========
    convergence_tol : float
        relative improvement under which the fit stops. A negative value
        such as -1 disables the test.
    """

    def __init__(self,convergence_tol=0.005):
        self.convergence_tol = convergence_tol
        self.loss_prev = np.inf
        self.records = []

    def record(self,it,scorer,value):
        self.records.append({'iter': it, 'scorer': scorer, 'value': float(value)})

    def converged(self,loss):
        if loss==0:
            # exact fit, nothing left to improve
            return True
        with np.errstate(divide='ignore',invalid='ignore'):
            improvement = np.float64(self.loss_prev)/np.float64(loss)-1
        self.loss_prev = loss
        return bool(improvement<self.convergence_tol)

    def trace(self):
        return pd.DataFrame(self.records,columns=['iter','scorer','value'])
