"""
Weighted Regularized Matrix Factorization solved by Alternating Least Squares.

- implicit feedback : Hu, Koren, Volinsky, "Collaborative Filtering for
  Implicit Feedback Datasets", ICDM 2008. Observed weights are confidences
  of a binary preference.
- explicit feedback : classic ALS on the observed ratings only
  (squared error, no biases).

The user x item matrix is factored as U^T I with U (rank x n_users) and
I = components (rank x n_items). Item factors are the learned state of the
model; user factors are returned by fit_transform and transform.
"""
import logging
import numbers
import numpy as np
from sklearn.exceptions import NotFittedError
from sklearn.utils import check_random_state

from wrmflearn.exceptions import ConfigurationError
from wrmflearn.parallel import WorkerPool, blas_single_threaded
from wrmflearn.settings import settings
from wrmflearn.utils import check_interactions, check_non_negative
from wrmflearn.WRMF.convergence import ConvergenceTracker
from wrmflearn.WRMF.solvers import (RidgeSolver, CholeskySolver, ConjugateGradientSolver,
                                    gram, explicit_loss)

LOGGER = logging.getLogger(__name__)

FEEDBACKS = ("implicit", "explicit")
SOLVERS = ("cholesky", "conjugate_gradient")
PRECISIONS = {"double": np.float64, "single": np.float32}

def identity(x):
    return x

def _check_positive_int(value,name):
    if isinstance(value,bool) or not isinstance(value,numbers.Integral) or value<1:
        raise ConfigurationError("%s should be a positive integer, got %r" % (name,value))
    return int(value)

class WRMF(object):
    """
    Parameters
    ==========
    rank : int
        Number of latent factors.
    lbda : float
        Regularization constant, the same for users and items.
    init : array-like, shape = [rank, num_items]
        initial item factors. If None, initiate with random values.
    preprocess : callable
        applied to the user x item csc_matrix before factorization and
        again in transform. For instance log_transfo to discount large
        counts or normalize_rows. It is the confidence function of the
        implicit model; the +1 on observed entries is added by the solver.
    feedback : string
        "implicit" or "explicit".
    non_negative : bool
        Should the factors be non negative ?
    solver : string
        solver of the implicit problem, "conjugate_gradient" or "cholesky".
        Explicit feedback always uses a direct ridge regression.
    cg_steps : int
        number of conjugate gradient steps per entity and ALS pass.
    precision : string
        "double" or "single". Single precision is only available for
        implicit feedback.
    n_threads : int
        number of threads for the per-entity loop. If None, taken from
        the WRMF_N_THREADS environment variable.
    seed : int
        if not None, fix the random initialisation of the item factors.
    """

    def __init__(self,rank=10,lbda=0.,init=None,preprocess=None,feedback="implicit",
                 non_negative=False,solver="conjugate_gradient",cg_steps=3,
                 precision="double",n_threads=None,seed=None):
        if feedback not in FEEDBACKS:
            raise ConfigurationError("feedback should be one of %s, got %r" % (FEEDBACKS,feedback))
        if solver not in SOLVERS:
            raise ConfigurationError("solver should be one of %s, got %r"
                                     % (SOLVERS,solver))
        if precision not in PRECISIONS:
            raise ConfigurationError("precision should be one of %s, got %r"
                                     % (tuple(PRECISIONS),precision))
        if feedback=="explicit" and precision=="single":
            raise ConfigurationError("explicit feedback doesn't support single precision")
        if not isinstance(lbda,numbers.Real) or lbda<0:
            raise ConfigurationError("lbda should be a non negative number, got %r" % (lbda,))
        if preprocess is None:
            preprocess = identity
        if not callable(preprocess):
            raise ConfigurationError("preprocess should be callable")

        self.rank = _check_positive_int(rank,"rank")
        self.cg_steps = _check_positive_int(cg_steps,"cg_steps")
        settings.apply_log_level()
        if n_threads is None:
            n_threads = settings.N_THREADS
        self.n_threads = _check_positive_int(n_threads,"n_threads")
        self.lbda = float(lbda)
        self.preprocess = preprocess
        self.feedback = feedback
        self.non_negative = non_negative
        self.solver = solver
        self.precision = precision
        self.dtype = PRECISIONS[precision]
        self.seed = seed

        # the solver is resolved once here and not at each pass
        if feedback=="explicit":
            if solver=="conjugate_gradient":
                LOGGER.warning("only 'cholesky' is available for 'explicit' feedback")
            self._solver = RidgeSolver(self.lbda,non_negative)
        elif solver=="conjugate_gradient":
            if non_negative:
                LOGGER.warning("non negative factorization uses the direct solver, "
                               "conjugate gradient is ignored")
            self._solver = ConjugateGradientSolver(self.lbda,non_negative,self.cg_steps)
        else:
            self._solver = CholeskySolver(self.lbda,non_negative)

        self.components = None
        if init is not None:
            self.components = np.array(init,dtype=self.dtype)
            if self.components.ndim!=2 or self.components.shape[0]!=self.rank:
                raise ConfigurationError("init should have %d rows, got shape %s"
                                         % (self.rank,self.components.shape))
        self.XtX = None

    def _prepare(self,x,ensure_min_samples=1):
        LOGGER.debug("converting input to csc_matrix")
        x = check_interactions(x,self.dtype,ensure_min_samples)
        x = check_interactions(self.preprocess(x),self.dtype,ensure_min_samples)
        if self.feedback=="implicit" or self.non_negative:
            LOGGER.debug("checking interactions are not negative")
            check_non_negative(x)
        return x

    def init_components(self,num_items):
        """
        Working copy of the item factors: the current ones or random values.
        """
        if self.components is None:
            LOGGER.debug("initializing item factors")
            rng = check_random_state(self.seed)
            return rng.normal(0,0.01,size=(self.rank,num_items)).astype(self.dtype)
        if self.components.shape!=(self.rank,num_items):
            raise ConfigurationError("item factors of shape %s don't match rank %d and %d items"
                                     % (self.components.shape,self.rank,num_items))
        return self.components.astype(self.dtype,copy=True)

    def fit_transform(self,x,n_iter=10,convergence_tol=0.005):
        """
        Learn factors from the user x item matrix. User and item factors
        are fitted alternately, starting with the users.

        The passes work on copies: components and XtX are only replaced
        when the fit completes, so a NumericalFailure leaves the model as
        it was before the call.

        Parameters
        ==========
        x : scipy.sparse matrix or array-like
            user x item interactions (weights or ratings).
        n_iter : int
            maximum number of ALS iterations.
        convergence_tol : float
            stop when loss_prev / loss - 1 < convergence_tol.

        Returns
        =======
        user_embeddings : array, shape = [num_users, rank]
        trace : pandas.DataFrame with columns iter, scorer, value
        """
        n_iter = _check_positive_int(n_iter,"n_iter")
        c_ui = self._prepare(x)
        LOGGER.debug("transposing input to traverse it by users")
        c_iu = c_ui.T.tocsc()
        num_users, num_items = c_ui.shape

        components = self.init_components(num_items)
        LOGGER.debug("initializing user factors")
        U = np.zeros((self.rank,num_users),dtype=self.dtype)
        XtX = gram(components,self.lbda)

        tracker = ConvergenceTracker(convergence_tol)
        LOGGER.info("starting factorization with %d threads",self.n_threads)
        with blas_single_threaded(), WorkerPool(self.n_threads) as pool:
            for it in range(1,n_iter+1):
                LOGGER.debug("iter %d by item",it)
                self._solver(c_iu,components,U,XtX,pool)

                LOGGER.debug("iter %d by user",it)
                YtY = gram(U,self.lbda)
                loss = self._solver(c_ui,U,components,YtY,pool)
                if self.feedback=="explicit":
                    loss = explicit_loss(c_ui,U,components,self.lbda)

                XtX = gram(components,self.lbda)

                tracker.record(it,"loss",loss)
                LOGGER.info("iter %d loss = %.4f",it,loss)
                if tracker.converged(loss):
                    LOGGER.info("Converged after %d iterations",it)
                    break

        self.components = components
        self.XtX = XtX
        return np.ascontiguousarray(U.T), tracker.trace()

    def transform(self,x):
        """
        User embeddings for new rows with the item factors fixed: a single
        ALS pass, no iteration.

        The pass starts from zero embeddings. With the conjugate gradient
        solver it is exact only when cg_steps >= rank; below that the
        embeddings are the cg_steps-step approximation and differ from the
        ones fit_transform returned for the same rows.

        Parameters
        ==========
        x : scipy.sparse matrix or array-like
            user x item interactions with as many columns as fitted items.
            May have no rows.

        Returns
        =======
        user_embeddings : array, shape = [num_rows, rank]
        """
        if self.components is None:
            raise NotFittedError("WRMF has no item factors, call fit_transform first")
        x = self._prepare(x,ensure_min_samples=0)
        if x.shape[1]!=self.components.shape[1]:
            raise ConfigurationError("input has %d columns but the model has %d items"
                                     % (x.shape[1],self.components.shape[1]))
        if self.XtX is None:
            self.XtX = gram(self.components,self.lbda)

        res = np.zeros((self.rank,x.shape[0]),dtype=self.dtype)
        with blas_single_threaded(), WorkerPool(self.n_threads) as pool:
            self._solver(x.T.tocsc(),self.components,res,self.XtX,pool)
        return np.ascontiguousarray(res.T)
