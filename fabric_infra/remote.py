# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import signal

from loguru import logger as LOG


class ProcessSupervisor:
    """
    Starts local runnables and keeps track of their handles so that they can
    all be terminated at once, whatever state they are in.
    """

    def __init__(self):
        self.handles = []

    def start(self, runnable):
        handle = runnable.start()
        self.handles.append(handle)
        if handle.is_exited() and handle.error is not None:
            LOG.warning(f"[{handle.name}] could not be started: {handle.error}")
        return handle

    def stop_all(self, handles=None, sig=signal.SIGTERM):
        """
        Send `sig` to every handle (all tracked handles by default). Does not
        wait for the processes to exit.
        """
        if handles is None:
            handles = self.handles
        for handle in handles:
            if handle.is_exited():
                LOG.debug(f"[{handle.name}] already exited")
                continue
            try:
                LOG.info(f"[{handle.name}] sending {signal.Signals(sig).name}")
                handle.signal(sig)
            except Exception as e:
                LOG.warning(f"[{handle.name}] could not be signalled: {e}")

    def running(self):
        return [h for h in self.handles if not h.is_exited()]
