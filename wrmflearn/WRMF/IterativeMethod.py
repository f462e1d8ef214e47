import numpy as np

# squared residual norm under which the iterate is considered exact
CG_TOL = 1e-10

def conjugate_gradient(A_mult, b, x, max_iter = 3, tol = CG_TOL):
    """
    Truncated conjugate gradient for a symmetric positive definite system
    A x = b where A is only available through A_mult(v) = A v.
    x is the starting point and is refined in place (warm start).
    """
    r = b - A_mult(x)
    p = r.copy()
    rs_old = np.dot(r, r)

    for it_count in range(max_iter):
        if rs_old < tol:
            break
        Ap = A_mult(p)
        alpha = rs_old / np.dot(p, Ap)
        x += alpha * p
        r -= alpha * Ap
        rs_new = np.dot(r, r)
        p = r + (rs_new / rs_old) * p
        rs_old = rs_new
    return x
