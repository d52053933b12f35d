"""
Services package for Fidget Index.

- alert_engine: threshold/cooldown state machine and alert dispatch
- alert_channels: sound, vibration, visual and Pushover delivery
- signaling_relay: host/phone pairing and WebRTC message relay
- engagement_store: persistence of samples, alerts and alert settings
"""
