import logging
import numbers
import operator
from collections.abc import Mapping

import numpy as np

from .errors import IndexOutOfRange, InvalidArgument, ShapeMismatch

logger = logging.getLogger(__name__)


def _check_count(n):
    n = operator.index(n)
    if n <= 0:
        raise InvalidArgument(f"n must be positive, got {n}")
    return n


def _readonly(array):
    """Returns a view of 'array' that refuses writes."""
    view = array.view()
    view.flags.writeable = False
    return view


def _sum_into(out, arrays):
    """Overwrites 'out' with the exact sum of 'arrays', in order."""
    np.copyto(out, arrays[0])
    for a in arrays[1:]:
        out += a


def _is_pair(obj):
    return (
        isinstance(obj, tuple)
        and len(obj) == 2
        and isinstance(obj[0], numbers.Integral)
    )


def _unwrap(other):
    return other._aggregate if isinstance(other, GradientAggregator) else other


class GradientAggregator:
    """
    Tracks a gradient made up of the sum of several sub-gradients (components).

    Replacing one component costs O(size of one component), independent of
    the number of components, because the aggregate is corrected by the
    difference between the new and the old value instead of being re-summed.
    Combined with a first-order method this gives the stochastic average
    gradient (SAG) method for finite-sum optimization.

    The aggregator reads like a numpy array holding the aggregate: it has
    shape/dtype, supports indexing, iteration, arithmetic and np.asarray().
    It cannot be written to directly; use update().

    Example:
        agg = GradientAggregator.zeros(3, (10,))
        agg.update(0, g0)              # agg == g0
        agg.update(1, g1)              # agg == g0 + g1
        f = agg.initialized_fraction() # 2/3
        w -= (lr / f) * agg            # gradient descent step

    Args:
        components (iterable): The initial components, all of the same shape.
            They are cast to the dtype of the first one.
        aggregate (array, optional): Array receiving the sum. If None, a new
            array is allocated and the components are summed into it.
        overwrite (bool): If True, the aggregate is recomputed as the sum of
            the components. If False, 'aggregate' is trusted as given.
        copy (bool): If True (default) the aggregator copies its inputs. If
            False it adopts arrays that already have the right dtype, and
            the caller must not write to them afterwards.
    """

    # Bulk updates touching more than this share of the components
    # overwrite them and re-sum once instead of applying deltas.
    resum_ratio = 0.5

    def __init__(self, components, aggregate=None, overwrite=True, copy=True):
        components = list(components)
        if not components:
            raise InvalidArgument("There must be at least 1 component")

        first = np.asarray(components[0])
        shape, dtype = first.shape, first.dtype

        arrays = []
        for i, c in enumerate(components):
            c = np.asarray(c)
            if c.shape != shape:
                raise ShapeMismatch(
                    f"The {i}-th component has shape {c.shape}, "
                    f"but the first component has shape {shape}"
                )
            arrays.append(np.array(c, dtype=dtype, copy=True) if copy else np.asarray(c, dtype=dtype))

        if aggregate is None:
            aggregate = np.empty(shape, dtype=dtype)
            overwrite = True
        else:
            aggregate = np.array(aggregate, dtype=dtype, copy=True) if copy else np.asarray(aggregate, dtype=dtype)
            if aggregate.shape != shape:
                raise ShapeMismatch(
                    f"The aggregate has shape {aggregate.shape}, "
                    f"but the components have shape {shape}"
                )

        if overwrite:
            _sum_into(aggregate, arrays)

        self._components = arrays
        self._aggregate = aggregate
        self._initialized = np.zeros(len(arrays), dtype=bool)
        self._initialized_count = 0

        # Views handed out to callers; they follow every in-place update.
        self._view = _readonly(aggregate)
        self._component_views = [_readonly(a) for a in arrays]

        logger.debug("Created %r (overwrite=%s, copy=%s)", self, overwrite, copy)

    # --- 1. Alternative Constructors ---
    @classmethod
    def from_gradient(cls, gradient, n: int, copy: bool = True):
        """
        Splits an existing gradient evenly across 'n' components.

        Each component holds gradient / n (cast back to the gradient's dtype,
        so integer gradients are truncated). The aggregate is the gradient
        itself, not the sum of the divided parts, so it is exact.
        """
        n = _check_count(n)
        gradient = np.array(gradient, copy=True) if copy else np.asarray(gradient)
        share = gradient / n
        components = [share.astype(gradient.dtype) for _ in range(n)]
        return cls(components, gradient, overwrite=False, copy=False)

    @classmethod
    def zeros(cls, n: int, shape, dtype=np.float64):
        """Creates 'n' zero components of the given shape and dtype."""
        n = _check_count(n)
        components = [np.zeros(shape, dtype=dtype) for _ in range(n)]
        return cls(components, np.zeros(shape, dtype=dtype), overwrite=False, copy=False)

    def similar(self, shape=None, dtype=None):
        """Returns a zero-filled aggregator with the same number of components."""
        return type(self).zeros(
            self.n_components,
            self.shape if shape is None else shape,
            self.dtype if dtype is None else dtype,
        )

    # --- 2. Updates ---
    def update(self, index, value=None):
        """
        Sets the 'index'-th component to 'value' and corrects the aggregate.

        Also accepts a single (index, value) tuple, or an iterable of such
        pairs (see update_many). Returns a read-only view of the stored
        component for single updates, None for bulk updates.
        """
        if value is None:
            if isinstance(index, numbers.Integral):
                raise InvalidArgument(f"No value given for index {index}")
            if not _is_pair(index):
                return self.update_many(index)
            index, value = index

        index = self._check_index(index)
        value = self._check_value(value)
        return self._apply(index, value)

    def update_many(self, pairs):
        """
        Performs an update for each (index, value) entry of 'pairs'.

        'pairs' may be any finite iterable of 2-element entries or a mapping
        from index to value. Every entry is validated before anything is
        written, and the result is the same as applying the entries one at a
        time in order (the last value for a repeated index wins).
        """
        entries = self._check_entries(pairs)
        if not entries:
            return None

        if len(entries) > self.resum_ratio * self.n_components:
            logger.debug("Bulk update of %d/%d components: full resum", len(entries), self.n_components)
            self._update_resum(entries)
        else:
            logger.debug("Bulk update of %d/%d components: incremental", len(entries), self.n_components)
            self._update_incremental(entries)
        return None

    def _read(self, value):
        """Takes the current contents of 'value' in the aggregator's dtype."""
        if value.dtype != self.dtype:
            return value.astype(self.dtype)
        if np.may_share_memory(value, self._aggregate):
            # The aggregate changes below; keep what it holds now.
            return value.copy()
        return value

    def _apply(self, index, value):
        value = self._read(value)
        component = self._components[index]
        # The delta must be taken before the component is overwritten.
        self._aggregate += value - component
        component[...] = value
        self._mark(index)
        return self._component_views[index]

    def _update_incremental(self, entries):
        for index, value in entries:
            self._apply(index, value)

    def _update_resum(self, entries):
        stale = False
        for index, value in entries:
            if stale and np.may_share_memory(value, self._aggregate):
                # Reads of the aggregate must see the entries before this one.
                _sum_into(self._aggregate, self._components)
            self._components[index][...] = self._read(value)
            self._mark(index)
            stale = True
        _sum_into(self._aggregate, self._components)

    def _mark(self, index):
        if not self._initialized[index]:
            self._initialized[index] = True
            self._initialized_count += 1

    # --- 3. Validation ---
    def _check_index(self, index):
        index = operator.index(index)
        if not 0 <= index < self.n_components:
            raise IndexOutOfRange(f"index is {index}, but there are {self.n_components} components")
        return index

    def _check_value(self, value):
        value = np.asarray(value)
        if value.shape != self.shape:
            raise ShapeMismatch(f"value has shape {value.shape}, but the aggregate has shape {self.shape}")
        return value

    def _check_entries(self, pairs):
        items = pairs.items() if isinstance(pairs, Mapping) else pairs
        entries = []
        for entry in items:
            try:
                index, value = entry
            except (TypeError, ValueError):
                raise InvalidArgument(f"Expected an (index, value) pair, got {type(entry).__name__}") from None
            entries.append((self._check_index(index), self._check_value(value)))
        return entries

    # --- 4. Tracking ---
    @property
    def n_components(self):
        return len(self._components)

    @property
    def initialized_count(self):
        return self._initialized_count

    @property
    def initialized(self):
        """Read-only mask of the components that have been updated at least once."""
        return _readonly(self._initialized)

    def initialized_fraction(self):
        """Returns the fraction of components that have been updated at least once."""
        return self._initialized_count / self.n_components

    @property
    def components(self):
        """Read-only views of the components, in index order."""
        return tuple(self._component_views)

    @property
    def aggregate(self):
        """Read-only view of the aggregate (the sum of the components)."""
        return self._view

    # --- 5. Array Interface ---
    @property
    def shape(self):
        return self._aggregate.shape

    @property
    def ndim(self):
        return self._aggregate.ndim

    @property
    def size(self):
        return self._aggregate.size

    @property
    def dtype(self):
        return self._aggregate.dtype

    def __array__(self, dtype=None, copy=None):
        if dtype is not None and np.dtype(dtype) != self.dtype:
            if copy is False:
                raise ValueError(f"Unable to avoid a copy while converting the aggregate to {np.dtype(dtype)}")
            return self._aggregate.astype(dtype)
        if copy:
            return self._aggregate.copy()
        return self._view

    def __len__(self):
        return len(self._view)

    def __iter__(self):
        return iter(self._view)

    def __getitem__(self, key):
        return self._view[key]

    def __setitem__(self, key, value):
        raise TypeError(f"{type(self).__name__} does not support item assignment; use update()")

    def isapprox(self, other, rtol=1e-05, atol=1e-08):
        """Approximate comparison of the aggregate against an array of the same shape."""
        other = np.asarray(_unwrap(other))
        if other.shape != self.shape:
            return False
        return bool(np.allclose(self._aggregate, other, rtol=rtol, atol=atol))

    def __eq__(self, other):
        return self._aggregate == _unwrap(other)

    def __ne__(self, other):
        return self._aggregate != _unwrap(other)

    __hash__ = None

    # --- 6. Arithmetic (results are plain numpy arrays) ---
    def __add__(self, other):
        return self._aggregate + _unwrap(other)

    def __radd__(self, other):
        return _unwrap(other) + self._aggregate

    def __sub__(self, other):
        return self._aggregate - _unwrap(other)

    def __rsub__(self, other):
        return _unwrap(other) - self._aggregate

    def __mul__(self, other):
        return self._aggregate * _unwrap(other)

    def __rmul__(self, other):
        return _unwrap(other) * self._aggregate

    def __truediv__(self, other):
        return self._aggregate / _unwrap(other)

    def __rtruediv__(self, other):
        return _unwrap(other) / self._aggregate

    def __matmul__(self, other):
        return self._aggregate @ _unwrap(other)

    def __rmatmul__(self, other):
        return _unwrap(other) @ self._aggregate

    def __neg__(self):
        return -self._aggregate

    def __pos__(self):
        return self._aggregate.copy()

    def _no_inplace(self, other):
        raise TypeError(f"{type(self).__name__} cannot be modified in place; use update()")

    __iadd__ = __isub__ = __imul__ = __itruediv__ = _no_inplace

    def __repr__(self):
        return f"GradientAggregator(dtype={self.dtype}, n={self.n_components}, shape={self.shape})"


def initialized_fraction(obj):
    """
    Returns the fraction of initialized components of 'obj'.

    Anything that does not track components (plain arrays, scalars) counts
    as fully initialized, so callers can treat both the same way.
    """
    if isinstance(obj, GradientAggregator):
        return obj.initialized_fraction()
    return 1.0
