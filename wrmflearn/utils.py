from sklearn.utils import check_array
from sklearn.preprocessing import normalize
from scipy.sparse import csr_matrix, csc_matrix, issparse
from sklearn.metrics import mean_squared_error
import numpy as np

from wrmflearn.exceptions import ConfigurationError

def sparse_matrix(X,n,p,w=1):
    """
    Build a users x items csr_matrix from a dict / DataFrame with the
    columns 'row', 'col' and 'val'.
    """
    R = csr_matrix((w*np.asarray(X['val'],dtype=np.float64),
                    (X['row'],X['col'])), shape=(n,p))
    return R

def check_interactions(X,dtype=np.float64,ensure_min_samples=1):
    """
    Convert any matrix-like input to a csc_matrix of the requested dtype
    with explicit zeros removed.
    """
    try:
        X = check_array(X,accept_sparse="csc",dtype=None,
                        ensure_min_samples=ensure_min_samples)
    except ValueError as err:
        raise ConfigurationError("can't use interactions: %s" % err) from err
    if issparse(X):
        X = X.tocsc().astype(dtype)
    else:
        X = csc_matrix(X,dtype=dtype)
    X.sum_duplicates()
    X.eliminate_zeros()
    return X

def check_non_negative(X):
    if X.nnz and X.data.min()<0:
        raise ConfigurationError("interactions contain negative values")

#==========================================================
# preprocess functions (confidence transformations)
#==========================================================

def linear_transfo(R,alpha=1.):
    """
    Confidence = alpha*R on the observed entries. The +1 of
    c = 1 + alpha*r is added by the implicit solvers.
    """
    R = R.copy()
    R.data = alpha*R.data
    return R

def log_transfo(R,alpha=1.,eps=1.):
    R = R.copy()
    R.data = alpha*np.log1p(R.data/eps)
    return R

def normalize_rows(R,norm='l1'):
    # each user row sums (l1) or has unit length (l2)
    return normalize(R,norm=norm,axis=1)

def RMSE(R_true,R_pred,W=None):
    if W is None:
        W = R_true.nonzero()
    if issparse(R_true):
        return mean_squared_error(np.asarray(R_true[W]).ravel(),R_pred[W])**.5
    else:
        return mean_squared_error(R_true[W],R_pred[W])**.5
