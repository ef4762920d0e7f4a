import time

NO_LAYER = -1


class SkipSignal:
    """Flag used to cut the current animation pass short."""

    def __init__(self):
        self._set = False

    def request(self):
        self._set = True

    def is_set(self):
        return self._set

    def clear(self):
        self._set = False


class VisualizationAnimator:
    """
    Highlights network layers one at a time.

    begin() resets the pass, step_through() walks the layers with a delay
    between steps, request_skip() ends the running pass early. Waiting is
    done in short slices and ``pump`` is called after each slice so the
    caller's event loop can deliver a skip request.
    """
    def __init__(self, signal=None, sleep=time.sleep, pump=None, slice_seconds=0.02):
        self.signal = signal if signal is not None else SkipSignal()
        self.sleep = sleep
        self.pump = pump
        self.slice_seconds = slice_seconds
        self.active_index = NO_LAYER
        self.layer_count = 0
        self.layer_names = ()
        self.running = False
        self._listeners = []

    def add_listener(self, callback):
        """callback(index, name) is called on every highlight change; index -1 means none."""
        self._listeners.append(callback)

    def _notify(self):
        name = self.layer_names[self.active_index] if self.active_index != NO_LAYER else None
        for cb in self._listeners:
            cb(self.active_index, name)

    def begin(self, layers):
        if isinstance(layers, int):
            self.layer_names = tuple(f'layer{i}' for i in range(layers))
        else:
            self.layer_names = tuple(layers)
        self.layer_count = len(self.layer_names)
        self.active_index = NO_LAYER
        self.signal.clear()

    def request_skip(self):
        if self.running:
            self.signal.request()

    def step_through(self, per_layer_delay):
        """Run one pass; returns the indices whose highlight ran its full delay.

        A skip landing while a layer is highlighted drops that layer from the
        result, so a skipped pass always returns a strict prefix.
        """
        visited = []
        self.running = True
        try:
            for index in range(self.layer_count):
                if self.signal.is_set():
                    break
                self.active_index = index
                self._notify()
                self._wait(per_layer_delay)
                if self.signal.is_set():
                    break
                visited.append(index)
        finally:
            self.running = False
            self.signal.clear()
            self.active_index = NO_LAYER
            self._notify()
        return visited

    def _wait(self, seconds):
        if self.pump is not None:
            self.pump()
        deadline = time.monotonic() + seconds
        while not self.signal.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self.sleep(min(self.slice_seconds, remaining))
            if self.pump is not None:
                self.pump()
