"""
Per-entity solvers of one ALS pass.

Every solver updates the factor matrix X (rank x n_update) column by
column, holding the other factor matrix Y (rank x n_fixed) fixed. The
interactions are given as a csc_matrix C of shape (n_fixed, n_update) so
that column j of C holds the observations of the entity being solved.

- RidgeSolver : explicit feedback, ||Y_nnz^T x - r||^2 + lbda ||x||^2
- CholeskySolver : implicit feedback (Hu, Koren, Volinsky), exact solve of
      (YtY + Y_nnz diag(c) Y_nnz^T) x = Y_nnz (c + 1)
- ConjugateGradientSolver : same system, a few warm-started CG steps

A pass returns its loss: the sum of the per-entity objectives plus the
penalty of the fixed side, divided by the number of observations.
"""
import logging
import numpy as np
from scipy.linalg import cho_factor, cho_solve, cholesky, solve, solve_triangular, LinAlgError
from scipy.optimize import nnls

from wrmflearn.exceptions import ConfigurationError, NumericalFailure
from wrmflearn.parallel import WorkerPool
from wrmflearn.WRMF.IterativeMethod import conjugate_gradient

LOGGER = logging.getLogger(__name__)

NNLS_MAX_ITER = 10000

def gram(X,lbda):
    """
    X X^T + lbda I for a rank x n factor matrix.
    """
    rank = X.shape[0]
    XtX = X.dot(X.T)
    XtX[np.diag_indices(rank)] += lbda
    return XtX

def nnls_quadratic(A,b):
    """
    argmin_{x >= 0} x^T A x / 2 - b^T x for a positive definite A.
    With A = L^T L it is the least squares problem ||L x - L^-T b||.
    """
    try:
        L = cholesky(A,lower=False)
    except LinAlgError as err:
        raise NumericalFailure("system is not positive definite: %s" % err) from err
    d = solve_triangular(L,b,trans='T',lower=False)
    x, _ = nnls(L.astype(np.float64),d.astype(np.float64),maxiter=NNLS_MAX_ITER)
    return x

def ridge_regression(X_nnz,r_nnz,lbda,non_negative=False):
    """
    Solve argmin_w ||X_nnz^T w - r_nnz||^2 + lbda ||w||^2.

    Parameters
    ==========
    X_nnz : array, rank x k
        fixed factors of the k observed entries.
    r_nnz : array, k
        observed ratings.
    lbda : float
        regularization constant.
    non_negative : bool
        if True the solution is constrained to w >= 0.
    """
    rank = X_nnz.shape[0]
    if r_nnz.size==0:
        return np.zeros(rank,dtype=X_nnz.dtype)
    if non_negative:
        # stack sqrt(lbda) I under X_nnz^T to get the ridge penalty
        A = np.vstack([X_nnz.T,np.sqrt(lbda)*np.eye(rank)])
        b = np.concatenate([r_nnz,np.zeros(rank)])
        w, _ = nnls(A.astype(np.float64),b.astype(np.float64),maxiter=NNLS_MAX_ITER)
        return w.astype(X_nnz.dtype)
    XtX = gram(X_nnz,lbda)
    try:
        return solve(XtX,X_nnz.dot(r_nnz),assume_a='pos')
    except LinAlgError as err:
        raise NumericalFailure("singular ridge system (rank=%d, lambda=%g, %d ratings): %s"
                               % (rank,lbda,r_nnz.size,err)) from err

def implicit_objective(x,Y_nnz,c,YtY):
    """
    Weighted objective of one entity:
        sum_i c_i (p_i - x^T y_i)^2 + lbda ||x||^2
    with confidence 1 + c and preference 1 on the observed entries and
    confidence 1, preference 0 elsewhere. YtY = Y Y^T + lbda I carries the
    contribution of every entry as if unobserved.
    """
    s = Y_nnz.T.dot(x)
    return float(x.dot(YtY.dot(x)) + np.sum((1+c)*(1-s)**2 - s**2))

def explicit_loss(R,U,V,lbda):
    """
    Mean squared error over the observed entries of the users x items
    matrix R, plus the L2 penalty of both factor matrices (divided by the
    same count).
    """
    R = R.tocoo()
    pred = np.einsum('ij,ij->j',U[:,R.row],V[:,R.col])
    sse = np.sum((R.data-pred)**2)
    penalty = lbda*(np.sum(U**2)+np.sum(V**2))
    return float(sse+penalty)/max(R.nnz,1)

class ALSSolver(object):
    """
    Parameters
    ==========
    lbda : float
        Regularization constant.
    non_negative : bool
        Should the factors be constrained to be non negative ?
    """

    def __init__(self,lbda=0.,non_negative=False):
        self.lbda = lbda
        self.non_negative = non_negative

    def solve(self,j,indices,values,Y,YtY,X):
        """
        Update X[:,j] from the entries (indices, values) of entity j.
        Return the objective of the entity.
        """
        raise NotImplementedError

    def __call__(self,C,Y,X,YtY=None,pool=None):
        """
        One ALS pass: X is updated in place, the loss is returned.
        """
        if C.shape!=(Y.shape[1],X.shape[1]):
            raise ConfigurationError("interactions of shape %s don't match factors %s and %s"
                                     % (C.shape,Y.shape,X.shape))
        if YtY is None:
            YtY = gram(Y,self.lbda)
        indptr, indices, data = C.indptr, C.indices, C.data

        def update(j):
            p1 = indptr[j]
            p2 = indptr[j+1]
            return self.solve(j,indices[p1:p2],data[p1:p2],Y,YtY,X)

        if pool is None:
            pool = WorkerPool(1)
        losses = pool.map(update,X.shape[1])
        loss = np.sum(losses)+self.lbda*np.sum(Y**2)
        return float(loss)/max(C.nnz,1)

class RidgeSolver(ALSSolver):
    """
    Explicit feedback: one ridge regression per entity on its observed
    ratings only. YtY is not used.
    """

    def solve(self,j,indices,values,Y,YtY,X):
        if indices.size==0:
            X[:,j] = 0
            return 0.
        Y_nnz = Y[:,indices]
        w = ridge_regression(Y_nnz,values,self.lbda,self.non_negative)
        X[:,j] = w
        e = Y_nnz.T.dot(w)-values
        return float(e.dot(e)+self.lbda*w.dot(w))

class CholeskySolver(ALSSolver):
    """
    Implicit feedback, direct solve. The rank x rank system of each entity
    is YtY plus the low-rank update of its observed columns, factored by
    Cholesky.
    """

    def system(self,Y_nnz,values,YtY):
        A = YtY+(Y_nnz*values).dot(Y_nnz.T)
        b = Y_nnz.dot(values+1)
        return A, b

    def solve(self,j,indices,values,Y,YtY,X):
        Y_nnz = Y[:,indices]
        A, b = self.system(Y_nnz,values,YtY)
        if self.non_negative:
            x = nnls_quadratic(A,b).astype(X.dtype)
        else:
            try:
                x = cho_solve(cho_factor(A,lower=False),b)
            except LinAlgError as err:
                raise NumericalFailure("implicit system of entity %d is not positive definite "
                                       "(lambda=%g): %s" % (j,self.lbda,err)) from err
        X[:,j] = x
        return implicit_objective(x,Y_nnz,values,YtY)

class ConjugateGradientSolver(CholeskySolver):
    """
    Implicit feedback, approximate solve. The system is never formed:
    A v = YtY v + Y_nnz (c * Y_nnz^T v), and cg_steps conjugate gradient
    steps refine the current value of X[:,j].

    Parameters
    ==========
    cg_steps : int
        number of conjugate gradient steps per entity and pass.
    """

    def __init__(self,lbda=0.,non_negative=False,cg_steps=3):
        super(ConjugateGradientSolver,self).__init__(lbda,non_negative)
        self.cg_steps = cg_steps

    def solve(self,j,indices,values,Y,YtY,X):
        if self.non_negative:
            # CG can't keep the iterate in the orthant
            return super(ConjugateGradientSolver,self).solve(j,indices,values,Y,YtY,X)
        Y_nnz = Y[:,indices]

        def A_mult(v):
            return YtY.dot(v)+Y_nnz.dot(values*Y_nnz.T.dot(v))

        b = Y_nnz.dot(values+1)
        x = conjugate_gradient(A_mult,b,X[:,j].copy(),self.cg_steps)
        X[:,j] = x
        return implicit_objective(x,Y_nnz,values,YtY)
