"""
Voice Client.

Python rendition of the browser page: captures microphone audio, encodes
it for the realtime API, sends it through the relay, and keeps the list
of displayed messages.

- audio: PCM16 24 kHz mono encoding and decoding
- conversation: displayed messages and server event dispatch
- connection: socket to the relay
- recorder: microphone capture and playback (sounddevice)
"""
