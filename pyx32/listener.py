from abc import ABC, abstractmethod
from typing import List
import logging


class MixerListener(ABC):

    @abstractmethod
    def connected(self):
        pass

    @abstractmethod
    def disconnected(self):
        pass

    def message_received(self, message):
        """Called for every decoded OSC message from the mixer, solicited or not."""
        pass

    def error(self, error_message: str):
        # By default, do nothing but can be overwritten to be notified of socket and decode errors.
        pass


class MultiplexingListener(MixerListener):

    _listeners: List[MixerListener]

    def __init__(self):
        self._listeners = []

    def connected(self):
        for listener in self._listeners:
            listener.connected()

    def disconnected(self):
        for listener in self._listeners:
            listener.disconnected()

    def message_received(self, message):
        for listener in self._listeners:
            listener.message_received(message)

    def error(self, error_message: str):
        for listener in self._listeners:
            listener.error(error_message)

    def register_listener(self, listener: MixerListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: MixerListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            logging.info("Listener isn't registered")


class LoggingListener(MixerListener):

    def __init__(self, logger=logging):
        self.logger = logger

    def connected(self):
        self.logger.info("Connected")

    def disconnected(self):
        self.logger.info("Disconnected")

    def message_received(self, message):
        self.logger.debug(f"{message.address}: {[arg.value for arg in message.args]}")

    def error(self, error_message: str):
        self.logger.error(f"Mixer error: {error_message}")
